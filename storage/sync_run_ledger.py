"""SyncRun ledger stored in DynamoDB."""
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Iterator, Optional

import boto3
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import ClientError

from processor.errors import SyncRunFinalizedError
from processor.models import SyncRun, SyncStatus

logger = logging.getLogger(__name__)


class SyncRunLedger:
    """
    Append-mostly record of ingestion runs.

    A run is created as "running" and finalized exactly once to
    "success" or "failed"; a second finalization is rejected.
    """

    def __init__(self, table_name: str, dynamodb=None, region_name: Optional[str] = None):
        self.table_name = table_name
        self.dynamodb = dynamodb or boto3.resource('dynamodb', region_name=region_name)
        self.table = self.dynamodb.Table(table_name)

    def create_sync_run(self, source: str) -> SyncRun:
        run = SyncRun(
            run_id=str(uuid.uuid4()),
            source=source,
            status=SyncStatus.RUNNING,
            started_at=datetime.now(timezone.utc),
        )
        self.table.put_item(Item={
            'run_id': run.run_id,
            'source': run.source,
            'status': run.status.value,
            'started_at': run.started_at.isoformat(),
            'fetched_count': 0,
            'created_count': 0,
            'updated_count': 0,
            'skipped_count': 0,
        })
        logger.info(f"Started sync run {run.run_id} for source {source}")
        return run

    def finalize_sync_run(self, run_id: str, status: SyncStatus, fetched: int = 0,
                          created: int = 0, updated: int = 0, skipped: int = 0,
                          error_message: Optional[str] = None) -> SyncRun:
        """
        Close a running SyncRun with its final counters.

        Raises:
            SyncRunFinalizedError: If the run is not in "running" state
        """
        status = SyncStatus(status)
        if status == SyncStatus.RUNNING:
            raise ValueError("A run cannot be finalized as running")

        try:
            response = self.table.update_item(
                Key={'run_id': run_id},
                UpdateExpression=(
                    'SET #status = :status, finished_at = :finished_at, '
                    'fetched_count = :fetched, created_count = :created, '
                    'updated_count = :updated, skipped_count = :skipped, '
                    'error_message = :error'
                ),
                ConditionExpression='#status = :running',
                ExpressionAttributeNames={'#status': 'status'},
                ExpressionAttributeValues={
                    ':status': status.value,
                    ':running': SyncStatus.RUNNING.value,
                    ':finished_at': datetime.now(timezone.utc).isoformat(),
                    ':fetched': fetched,
                    ':created': created,
                    ':updated': updated,
                    ':skipped': skipped,
                    ':error': error_message,
                },
                ReturnValues='ALL_NEW'
            )
        except ClientError as e:
            if e.response['Error']['Code'] == 'ConditionalCheckFailedException':
                raise SyncRunFinalizedError(f"Sync run {run_id} is already finalized") from e
            logger.error(f"Error finalizing sync run {run_id}: {e}")
            raise

        logger.info(
            f"Sync run {run_id} finished with status {status.value}: "
            f"fetched={fetched} created={created} updated={updated} skipped={skipped}"
        )
        return self._item_to_sync_run(response['Attributes'])

    def get_sync_run(self, run_id: str) -> Optional[SyncRun]:
        item = self.table.get_item(Key={'run_id': run_id}).get('Item')
        return self._item_to_sync_run(item) if item else None

    def find_running_sync_run(self, source: str,
                              stale_after: Optional[timedelta] = None) -> Optional[SyncRun]:
        """
        Return a still-running SyncRun of this source, if any.

        Args:
            source: Adapter name
            stale_after: Runs started longer ago than this are finalized
                as failed and ignored (None = never stale)
        """
        cutoff = datetime.now(timezone.utc) - stale_after if stale_after else None
        for run in self._running_sync_runs(source):
            if cutoff is not None and run.started_at < cutoff:
                self._abandon(run, stale_after)
                continue
            return run
        return None

    def _running_sync_runs(self, source: str) -> Iterator[SyncRun]:
        scan_kwargs = {
            'FilterExpression': Attr('source').eq(source) & Attr('status').eq(SyncStatus.RUNNING.value)
        }
        response = self.table.scan(**scan_kwargs)
        while True:
            for item in response.get('Items', []):
                yield self._item_to_sync_run(item)
            if 'LastEvaluatedKey' not in response:
                return
            response = self.table.scan(ExclusiveStartKey=response['LastEvaluatedKey'], **scan_kwargs)

    def _abandon(self, run: SyncRun, stale_after: timedelta) -> None:
        logger.warning(f"Sync run {run.run_id} of {run.source} started at {run.started_at.isoformat()} "
                       f"was never finalized; marking it failed")
        try:
            self.finalize_sync_run(
                run.run_id, SyncStatus.FAILED,
                error_message=f"Abandoned: still running after {int(stale_after.total_seconds())}s"
            )
        except SyncRunFinalizedError:
            logger.info(f"Sync run {run.run_id} was finalized concurrently")

    @staticmethod
    def _item_to_sync_run(item: dict) -> SyncRun:
        finished_at = item.get('finished_at')
        return SyncRun(
            run_id=item['run_id'],
            source=item['source'],
            status=SyncStatus(item['status']),
            started_at=datetime.fromisoformat(item['started_at']),
            finished_at=datetime.fromisoformat(finished_at) if finished_at else None,
            fetched_count=int(item.get('fetched_count', 0)),
            created_count=int(item.get('created_count', 0)),
            updated_count=int(item.get('updated_count', 0)),
            skipped_count=int(item.get('skipped_count', 0)),
            error_message=item.get('error_message'),
        )

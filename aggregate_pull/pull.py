"""Pull one form and its submissions from Aggregate.

A pull fans out three independent jobs (blank form, submission list, form
media), joins them, then walks the enumerated instance ids in order and
downloads every submission the local database hasn't recorded yet. One
failing item never aborts the pull: it gets reported and skipped.
"""

import logging
import os
from datetime import date
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from .batches import DEFAULT_BATCH_SIZE, InstanceIdBatchGetter
from .cursor import Cursor, read_last_cursor, store_last_cursor
from .db import Database
from .exceptions import MissingCursorError, MissingFormDefinitionError
from .http import Http
from .jobs import DEFAULT_MAX_WORKERS, Job, JobsRunner, RunnerStatus
from .models import DownloadedSubmission, EventCallback, FormStatus, InstanceIdBatch, MediaFile, PullResult
from .server import AggregateServer, is_uri
from .submission_key import SubmissionKeyGenerator
from .tracker import PullTracker

logger = logging.getLogger("aggregate_pull")


def get_last_cursor(batches: Sequence[InstanceIdBatch]) -> Cursor:
    """Newest cursor among `batches`. The first one wins on ties."""
    if not batches:
        raise MissingCursorError("Can't get the last cursor of an empty list of batches")
    return max(b.cursor for b in batches)


def resolve_cursor(form: FormStatus, prefs, resume_last_pull: bool,
                   start_from_date: Optional[date] = None) -> Optional[Cursor]:
    if start_from_date is not None:
        return Cursor.of_date(start_from_date)
    if resume_last_pull:
        return read_last_cursor(prefs, form.form_id)
    return None


class PullFromAggregate:
    def __init__(self, http: Http, server: AggregateServer, storage_dir: str, db: Database,
                 include_incomplete: bool = False, on_event: Optional[EventCallback] = None,
                 batch_size: int = DEFAULT_BATCH_SIZE):
        self.http = http
        self.server = server
        self.storage_dir = storage_dir
        self.db = db
        self.include_incomplete = include_incomplete
        self.on_event = on_event
        self.batch_size = batch_size

    def pull(self, form: FormStatus, last_cursor: Optional[Cursor] = None,
             tracker: Optional[PullTracker] = None) -> Job[PullResult]:
        tracker = tracker or PullTracker(form, self.on_event)
        start_cursor = last_cursor or Cursor.empty()

        return Job.all_of(
            Job.supply(lambda status: self.download_form(form, status, tracker)),
            Job.supply(lambda status: self.get_submissions(form, start_cursor, status, tracker)),
            Job.supply(lambda status: self.get_form_attachments(form, status, tracker))
            .then_accept(lambda status, attachments: self.download_form_attachments(form, attachments, status, tracker)),
        ).then_apply(lambda status, results: self._download_submissions(form, start_cursor, results, status, tracker))

    def _download_submissions(self, form: FormStatus, start_cursor: Cursor, results: Tuple,
                              runner_status: RunnerStatus, tracker: PullTracker) -> PullResult:
        form_xml, batches, _ = results

        pending = [(batch, [i for i in batch.instance_ids if not self.db.has_recorded_instance(i, form.form_id)])
                   for batch in batches]
        tracker.track_skipped_submissions(sum(b.count() - len(ids) for b, ids in pending))

        if not any(ids for _, ids in pending):
            tracker.track_end()
            return PullResult(form, self._newest_cursor(batches, start_cursor))

        try:
            sub_key_gen = SubmissionKeyGenerator.from_blank_form(form_xml)
        except MissingFormDefinitionError as e:
            tracker.track_error(f"Can't download submissions: {e}")
            tracker.track_end()
            return PullResult(form, self._newest_cursor(batches, start_cursor))

        # A cancelled pull only moves past the batches it walked completely
        walked: List[InstanceIdBatch] = []
        cancelled = False
        for batch, instance_ids in pending:
            for instance_id in instance_ids:
                if runner_status.is_cancelled():
                    tracker.track_cancellation(f"Download submission {instance_id}")
                    cancelled = True
                    break
                # Ids repeated across pages get recorded on their first occurrence
                if self.db.has_recorded_instance(instance_id, form.form_id):
                    continue
                self._pull_submission(form, instance_id, sub_key_gen, runner_status, tracker)
            if cancelled:
                break
            walked.append(batch)

        tracker.track_end()
        return PullResult(form, self._newest_cursor(walked, start_cursor))

    @staticmethod
    def _newest_cursor(batches: Sequence[InstanceIdBatch], start_cursor: Cursor) -> Cursor:
        return get_last_cursor(batches) if batches else start_cursor

    def _pull_submission(self, form: FormStatus, instance_id: str, sub_key_gen: SubmissionKeyGenerator,
                         runner_status: RunnerStatus, tracker: PullTracker):
        """Download a submission and its attachments. It gets recorded only when all of them succeed."""
        submission = self.download_submission(form, instance_id, sub_key_gen, runner_status, tracker)
        if submission is None:
            return

        all_attachments = True
        for attachment in submission.attachments:
            if not self.download_submission_attachment(form, submission, attachment, runner_status, tracker):
                all_attachments = False
        if not all_attachments:
            return

        self.db.put_recorded_instance_directory(
            submission.instance_id,
            form.get_submission_dir(self.storage_dir, submission.instance_id),
            form.form_id,
        )

    def download_form(self, form: FormStatus, runner_status: RunnerStatus,
                      tracker: PullTracker) -> Optional[str]:
        if runner_status.is_cancelled():
            tracker.track_cancellation("Download form")
            return None

        response = self.http.execute(self.server.get_download_form_request(form.form_id), runner_status)
        if not response.is_success():
            tracker.track_error("Error downloading form", response)
            return None

        form_xml = response.get()
        form_file = form.get_form_file(self.storage_dir)
        try:
            os.makedirs(os.path.dirname(form_file), exist_ok=True)
            with open(form_file, "w", encoding="utf-8") as f:
                f.write(form_xml)
        except OSError as e:
            tracker.track_error(f"Error writing form to {form_file}: {e}")
            return None

        tracker.track_form_downloaded()
        return form_xml

    def get_form_attachments(self, form: FormStatus, runner_status: RunnerStatus,
                             tracker: PullTracker) -> List[MediaFile]:
        if runner_status.is_cancelled():
            tracker.track_cancellation("Get form attachments")
            return []

        if not is_uri(form.manifest_url):
            return []

        response = self.http.execute(self.server.get_manifest_request(form.manifest_url), runner_status)
        if not response.is_success():
            tracker.track_error("Error getting form attachments", response)
            return []

        attachments: List[MediaFile] = response.get()
        media_dir = form.get_form_media_dir(self.storage_dir)
        to_download = []
        for attachment in attachments:
            try:
                if attachment.needs_update(media_dir):
                    to_download.append(attachment)
            except ValueError as e:
                tracker.track_error(f"Ignoring form attachment: {e}")
        tracker.track_media_files(len(attachments), len(to_download))
        return to_download

    def download_form_attachments(self, form: FormStatus, attachments: Iterable[MediaFile],
                                  runner_status: RunnerStatus, tracker: PullTracker) -> int:
        downloaded = 0
        for attachment in attachments:
            if self.download_form_attachment(form, attachment, runner_status, tracker):
                downloaded += 1
        tracker.track_form_attachments_downloaded(downloaded)
        return downloaded

    def download_form_attachment(self, form: FormStatus, media_file: MediaFile,
                                 runner_status: RunnerStatus, tracker: PullTracker) -> bool:
        if runner_status.is_cancelled():
            tracker.track_cancellation(f"Download form attachment {media_file.filename}")
            return False

        try:
            target = form.get_form_media_file(self.storage_dir, media_file.filename)
        except ValueError as e:
            tracker.track_error(f"Ignoring form attachment: {e}")
            return False
        response = self.http.execute(self.server.get_download_request(media_file.download_url, target), runner_status)
        if not response.is_success():
            tracker.track_error(f"Error downloading form attachment {media_file.filename}", response)
            return False
        tracker.form_attachment_downloaded(media_file)
        return True

    def get_submissions(self, form: FormStatus, last_cursor: Cursor, runner_status: RunnerStatus,
                        tracker: PullTracker) -> List[InstanceIdBatch]:
        if runner_status.is_cancelled():
            tracker.track_cancellation("Get submissions")
            return []

        batches = []
        pager = InstanceIdBatchGetter(
            self.server, self.http, form.form_id, self.include_incomplete, last_cursor, self.batch_size,
            runner_status,
        )
        while runner_status.is_still_running() and pager.has_next():
            batches.append(pager.next())
        if runner_status.is_cancelled():
            tracker.track_cancellation("Get submissions")
        tracker.track_batches(batches)
        return batches

    def download_submission(self, form: FormStatus, instance_id: str, sub_key_gen: SubmissionKeyGenerator,
                            runner_status: RunnerStatus, tracker: PullTracker) -> Optional[DownloadedSubmission]:
        if runner_status.is_cancelled():
            tracker.track_cancellation(f"Download submission {instance_id}")
            return None

        submission_key = sub_key_gen.build_key(instance_id)
        response = self.http.execute(self.server.get_download_submission_request(submission_key), runner_status)
        if not response.is_success():
            tracker.track_error(f"Error downloading submission {instance_id}", response)
            return None

        submission: DownloadedSubmission = response.get()
        submission_file = form.get_submission_file(self.storage_dir, submission.instance_id)
        try:
            os.makedirs(os.path.dirname(submission_file), exist_ok=True)
            with open(submission_file, "w", encoding="utf-8") as f:
                f.write(submission.xml)
        except OSError as e:
            tracker.track_error(f"Error writing submission {instance_id}: {e}")
            return None

        tracker.track_submission()
        return submission

    def download_submission_attachment(self, form: FormStatus, submission: DownloadedSubmission,
                                       attachment: MediaFile, runner_status: RunnerStatus,
                                       tracker: PullTracker) -> bool:
        if runner_status.is_cancelled():
            tracker.track_cancellation(
                f"Download submission attachment {attachment.filename} of {submission.instance_id}"
            )
            return False

        try:
            target = form.get_submission_media_file(self.storage_dir, submission.instance_id, attachment.filename)
        except ValueError as e:
            tracker.track_error(f"Ignoring attachment of submission {submission.instance_id}: {e}")
            return False
        response = self.http.execute(self.server.get_download_request(attachment.download_url, target), runner_status)
        if not response.is_success():
            tracker.track_error(
                f"Error downloading attachment {attachment.filename} of submission {submission.instance_id}",
                response,
            )
            return False
        tracker.submission_attachment_downloaded(submission.instance_id, attachment)
        return True

    def launch(self, forms: Sequence[FormStatus], prefs,
               on_error: Callable[[BaseException], None],
               resume_last_pull: bool = True, start_from_date: Optional[date] = None,
               max_workers: int = DEFAULT_MAX_WORKERS) -> JobsRunner:
        """Pull every form in parallel and store each result's cursor in `prefs`."""
        logger.info(f"Pulling {len(forms)} forms from {self.server.base_url}")

        def _store_cursors(results: List[PullResult]):
            for result in results:
                store_last_cursor(prefs, result.form.form_id, result.get_last_cursor())

        return JobsRunner.launch_async(
            [self.pull(form, resolve_cursor(form, prefs, resume_last_pull, start_from_date)) for form in forms],
            on_error=on_error,
            on_success=_store_cursors,
            max_workers=max_workers,
        )

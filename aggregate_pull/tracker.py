"""Progress reporting for a form pull.

PullTracker only observes: every call logs a line, updates the form's status
string, and publishes a FormStatusEvent to the callback it was built with.
"""

import logging
import threading
from typing import List, Optional, Sequence

from .http import Response
from .models import EventCallback, FormStatus, FormStatusEvent, InstanceIdBatch, MediaFile

logger = logging.getLogger("aggregate_pull")


class PullTracker:
    def __init__(self, form: FormStatus, on_event: Optional[EventCallback] = None):
        self.form = form
        self.on_event = on_event
        self.total_submissions = 0
        self.errors: List[str] = []
        self.cancellations: List[str] = []
        self._submission_counter = 0
        self._lock = threading.Lock()

    def track_form_downloaded(self):
        self._report("Downloaded blank form")

    def track_batches(self, batches: Sequence[InstanceIdBatch]):
        self.total_submissions = sum(b.count() for b in batches)
        self._report(f"Downloading {self.total_submissions} submissions")

    def track_skipped_submissions(self, skipped: int):
        if skipped:
            self._report(f"Ignoring {skipped} submissions (already downloaded)")

    def track_submission(self):
        with self._lock:
            self._submission_counter += 1
            count = self._submission_counter
        self._report(f"Downloaded submission {count} of {self.total_submissions}")

    def track_media_files(self, manifest_count: int, to_download_count: int):
        if to_download_count:
            self._report(f"Downloading {to_download_count} attachments")
        if manifest_count > to_download_count:
            self._report(f"Ignoring {manifest_count - to_download_count} attachments (already present)")

    def form_attachment_downloaded(self, media_file: MediaFile):
        self._report(f"Downloaded form attachment {media_file.filename}")

    def track_form_attachments_downloaded(self, downloaded: int):
        if downloaded:
            self._report(f"Downloaded {downloaded} attachments")

    def submission_attachment_downloaded(self, instance_id: str, media_file: MediaFile):
        self._report(f"Downloaded attachment {media_file.filename} of submission {instance_id}")

    def track_error(self, message: str, response: Optional[Response] = None):
        if response is not None:
            message = f"{message}: HTTP {response.status_code} {response.reason}"
        with self._lock:
            self.errors.append(message)
        self._report(message, level=logging.ERROR)

    def track_cancellation(self, job: str):
        with self._lock:
            self.cancellations.append(job)
        self._report(f"{job} cancelled", level=logging.WARNING)

    def track_end(self):
        if self.errors:
            self._report(f"Finished with {len(self.errors)} errors")
        else:
            self._report("Success")

    def _report(self, status: str, level: int = logging.INFO):
        logger.log(level, f"[{self.form.form_id}] {status}")
        self.form.set_status_string(status)
        if self.on_event is not None:
            self.on_event(FormStatusEvent(self.form, status))

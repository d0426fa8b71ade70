"""
Image pull with a progress channel.

The pull itself is a blocking stream from the Docker low-level API, so it
runs in a worker thread (via async_docker_call). Layer progress is pushed
into an asyncio.Queue owned by the event loop; the caller awaits the final
PullOutcome and may independently consume the queue to observe progress.

Usage:
    progress = asyncio.Queue()
    tracker = ImagePullProgress(asyncio.get_running_loop(), progress)
    outcome = await tracker.pull_with_progress(client, "nginx:latest", auth_config)

    # elsewhere
    while (event := await progress.get()) is not None:
        ...

A None sentinel is always put on the queue when the pull finishes,
successfully or not.
"""

import asyncio
import logging
import time
from typing import Dict, Any, Optional

import docker

from updates.types import PullOutcome, PullProgress
from utils.async_docker import async_docker_call

logger = logging.getLogger(__name__)

# Daemon status lines that carry an id but describe the whole pull, not a layer
NON_LAYER_PREFIXES = ('Pulling from', 'Digest:', 'Status:')

# Final status lines written by the daemon at the end of a pull
_STATUS_NEWER = "downloaded newer image"
_STATUS_UP_TO_DATE = "image is up to date"


class PullStreamError(docker.errors.APIError):
    """The daemon reported an error inside the pull stream."""


class ImagePullProgress:
    """
    Handles Docker image pulls with layer-by-layer progress reporting.

    Features:
    - Layer status tracking (downloading, extracting, complete, cached)
    - Overall progress calculation (bytes-based, layer-count fallback)
    - Throttled events into an asyncio.Queue
    - Timeout handling
    - Post-pull verification that the image reached the local store
    """

    def __init__(self, loop: asyncio.AbstractEventLoop, queue: Optional[asyncio.Queue] = None):
        """
        Args:
            loop: Event loop that owns the queue
            queue: Optional channel for PullProgress events
        """
        self.loop = loop
        self.queue = queue

    async def pull_with_progress(
        self,
        client: docker.DockerClient,
        image: str,
        auth_config: Optional[Dict[str, str]] = None,
        timeout: int = 1800
    ) -> PullOutcome:
        """
        Pull an image and return UPDATED or UNCHANGED.

        Raises:
            docker.errors.NotFound: Image does not exist in the registry
            docker.errors.APIError: Registry/daemon errors (incl. PullStreamError)
            asyncio.TimeoutError / TimeoutError: Pull exceeded timeout
        """
        try:
            return await async_docker_call(
                self._stream_pull,
                client,
                image,
                auth_config,
                timeout,
                call_timeout=timeout
            )
        finally:
            self._publish(None)

    def _publish(self, event: Optional[PullProgress]):
        """Thread-safe put onto the progress channel."""
        if self.queue is None:
            return
        try:
            self.loop.call_soon_threadsafe(self.queue.put_nowait, event)
        except RuntimeError:
            # Loop already closed (shutdown in progress)
            pass

    def _stream_pull(
        self,
        client: docker.DockerClient,
        image: str,
        auth_config: Optional[Dict[str, str]],
        timeout: int
    ) -> PullOutcome:
        """Synchronous pull stream; runs in the thread pool."""
        api_client = client.api

        layer_status: Dict[str, Dict[str, Any]] = {}
        last_publish = 0.0
        last_percent = 0
        final_status = ''
        start_time = time.time()

        stream = api_client.pull(image, stream=True, decode=True, auth_config=auth_config)

        for line in stream:
            if time.time() - start_time > timeout:
                raise TimeoutError(f"Image pull exceeded {timeout} seconds")

            if line.get('error'):
                message = line.get('error')
                raise PullStreamError(message, explanation=message)

            layer_id = line.get('id')
            status = line.get('status', '')

            # Non-layer messages ("Pulling from library/nginx", "Digest: ...", "Status: ...")
            if not layer_id or status.startswith(NON_LAYER_PREFIXES):
                if status:
                    final_status = status
                continue

            progress_detail = line.get('progressDetail') or {}

            if status in ('Already exists', 'Pull complete'):
                total = layer_status.get(layer_id, {}).get('total', 0)
                layer_status[layer_id] = {'status': status, 'current': total, 'total': total}
            else:
                current = progress_detail.get('current', 0)
                total = progress_detail.get('total', 0)
                if total == 0 and layer_id in layer_status:
                    total = layer_status[layer_id].get('total', 0)
                layer_status[layer_id] = {'status': status, 'current': current, 'total': total}

            overall_percent = self._overall_percent(layer_status)
            now = time.time()

            # Throttle (every 500ms OR 5% change OR completion events)
            should_publish = (
                now - last_publish >= 0.5 or
                abs(overall_percent - last_percent) >= 5 or
                'complete' in status.lower() or
                status == 'Already exists'
            )
            if should_publish:
                data = layer_status[layer_id]
                self._publish(PullProgress(
                    layer_id=layer_id,
                    status=status,
                    current=data['current'],
                    total=data['total'],
                ))
                last_publish = now
                last_percent = overall_percent

        self._verify_image_present(client, image)

        outcome = self._outcome_from_status(final_status, layer_status)
        logger.info(f"Pulled {image}: {outcome.value} ({len(layer_status)} layers)")
        return outcome

    @staticmethod
    def _overall_percent(layer_status: Dict[str, Dict[str, Any]]) -> int:
        total_bytes = sum(l['total'] for l in layer_status.values() if l['total'] > 0)
        if total_bytes > 0:
            downloaded = sum(l['current'] for l in layer_status.values())
            return int((downloaded / total_bytes) * 100)

        completed = sum(
            1 for l in layer_status.values()
            if 'complete' in l['status'].lower() or l['status'] == 'Already exists'
        )
        return int((completed / max(len(layer_status), 1)) * 100)

    @staticmethod
    def _outcome_from_status(final_status: str, layer_status: Dict[str, Dict[str, Any]]) -> PullOutcome:
        lowered = final_status.lower()
        if _STATUS_NEWER in lowered:
            return PullOutcome.UPDATED
        if _STATUS_UP_TO_DATE in lowered:
            return PullOutcome.UNCHANGED
        # No final status line (older daemons): any freshly pulled layer means new content
        if any(l['status'] == 'Pull complete' for l in layer_status.values()):
            return PullOutcome.UPDATED
        return PullOutcome.UNCHANGED

    @staticmethod
    def _verify_image_present(client: docker.DockerClient, image: str, max_retries: int = 5):
        """
        Stream ending doesn't guarantee the image is committed to the local
        store yet; retry with exponential backoff before giving up.
        """
        retry_delay = 0.5

        for attempt in range(max_retries):
            try:
                client.images.get(image)
                return
            except docker.errors.ImageNotFound:
                if attempt < max_retries - 1:
                    logger.warning(
                        f"Image {image} not yet in local store "
                        f"(attempt {attempt + 1}/{max_retries}), retrying in {retry_delay}s"
                    )
                    time.sleep(retry_delay)
                    retry_delay *= 2
                else:
                    raise RuntimeError(
                        f"Image {image} pull appeared successful but image not available "
                        f"after {max_retries} verification attempts"
                    )

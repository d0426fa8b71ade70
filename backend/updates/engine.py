"""
Container Engine capability.

ContainerEngine is the narrow interface the detector and coordinator depend
on. DockerEngine implements it with the docker SDK; tests substitute an
in-memory fake.

Error contract for implementations:
- Any failed engine call raises EngineError (timeouts included)
- inspect_local_image() returns None when the image is absent
- pull_image() never raises for registry answers: it returns a PullOutcome
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional, Dict, Any, List

import docker

from updates.errors import EngineError
from updates.types import ContainerRecord, ImageIdentity, PullOutcome, ReplacementPlan
from utils.async_docker import async_docker_call

logger = logging.getLogger(__name__)


class ContainerEngine(ABC):
    """Operations the reconciler needs from a container runtime."""

    @abstractmethod
    async def ping(self) -> bool:
        """True if the engine answers."""

    @abstractmethod
    async def list_running(self) -> List[ContainerRecord]:
        """Running containers, in engine listing order."""

    @abstractmethod
    async def inspect(self, name: str) -> ContainerRecord:
        """Fresh view of one container, including its runtime config."""

    @abstractmethod
    async def pull_image(
        self,
        reference: str,
        credentials: Optional[Dict[str, str]] = None,
        progress: Optional[asyncio.Queue] = None
    ) -> PullOutcome:
        """Refresh the local copy of reference from its registry."""

    @abstractmethod
    async def inspect_local_image(self, reference: str) -> Optional[ImageIdentity]:
        """Identity of the locally cached image, or None if absent."""

    @abstractmethod
    async def create_container(self, plan: ReplacementPlan) -> str:
        """Create (not start) a container from plan; returns its id."""

    @abstractmethod
    async def start(self, name: str) -> None:
        ...

    @abstractmethod
    async def stop(self, name: str) -> None:
        ...

    @abstractmethod
    async def rename(self, name: str, new_name: str) -> None:
        ...

    @abstractmethod
    async def remove(self, name: str) -> None:
        ...


def classify_pull_error(error: Exception) -> PullOutcome:
    """Map a pull exception onto NOT_FOUND / AUTH_REQUIRED / ERROR."""
    if isinstance(error, docker.errors.NotFound):
        return PullOutcome.NOT_FOUND

    status_code = getattr(error, 'status_code', None)
    if status_code == 401:
        return PullOutcome.AUTH_REQUIRED
    if status_code == 404:
        return PullOutcome.NOT_FOUND

    message = str(error).lower()
    if 'unauthorized' in message or 'authentication required' in message or 'pull access denied' in message:
        return PullOutcome.AUTH_REQUIRED
    if 'repository does not exist' in message or 'not found' in message or 'manifest unknown' in message:
        return PullOutcome.NOT_FOUND

    return PullOutcome.ERROR


class DockerEngine(ContainerEngine):
    """
    ContainerEngine backed by the docker SDK.

    Every SDK call goes through async_docker_call with call_timeout, so a
    hung daemon surfaces as EngineError instead of stalling the pass.
    """

    def __init__(
        self,
        client: docker.DockerClient,
        call_timeout: float = 60,
        pull_timeout: float = 1800,
        stop_timeout: int = 10
    ):
        """
        Args:
            client: Docker client (e.g. docker.from_env())
            call_timeout: Seconds per engine call
            pull_timeout: Seconds per image pull
            stop_timeout: Seconds a container gets to stop before SIGKILL
        """
        self.client = client
        self.call_timeout = call_timeout
        self.pull_timeout = pull_timeout
        self.stop_timeout = stop_timeout

    async def _call(self, func, *args, **kwargs) -> Any:
        """Run an SDK call, converting every failure into EngineError."""
        try:
            return await async_docker_call(func, *args, call_timeout=self.call_timeout, **kwargs)
        except asyncio.TimeoutError as e:
            raise EngineError(f"Engine call timed out after {self.call_timeout}s") from e
        except docker.errors.APIError as e:
            raise EngineError(str(e), status_code=e.status_code) from e
        except docker.errors.DockerException as e:
            raise EngineError(str(e)) from e

    async def ping(self) -> bool:
        try:
            return bool(await self._call(self.client.ping))
        except EngineError as e:
            logger.warning(f"Docker ping failed: {e}")
            return False

    async def list_running(self) -> List[ContainerRecord]:
        containers = await self._call(self.client.containers.list)
        return [self._to_record(c.attrs) for c in containers]

    async def inspect(self, name: str) -> ContainerRecord:
        attrs = await self._call(self.client.api.inspect_container, name)
        return self._to_record(attrs)

    @staticmethod
    def _to_record(attrs: Dict[str, Any]) -> ContainerRecord:
        config = attrs.get('Config') or {}
        return ContainerRecord(
            id=attrs.get('Id', ''),
            name=attrs.get('Name', '').lstrip('/'),
            image_reference=config.get('Image', ''),
            current_image_id=attrs.get('Image', ''),
            runtime_config={
                'Config': config,
                'HostConfig': attrs.get('HostConfig') or {},
                'NetworkSettings': attrs.get('NetworkSettings') or {},
            },
            labels=config.get('Labels') or {},
        )

    async def pull_image(
        self,
        reference: str,
        credentials: Optional[Dict[str, str]] = None,
        progress: Optional[asyncio.Queue] = None
    ) -> PullOutcome:
        # Imported here: utils.image_pull_progress depends on updates.types
        from utils.image_pull_progress import ImagePullProgress

        tracker = ImagePullProgress(asyncio.get_running_loop(), progress)
        try:
            return await tracker.pull_with_progress(
                self.client,
                reference,
                auth_config=credentials,
                timeout=self.pull_timeout
            )
        except (asyncio.TimeoutError, TimeoutError) as e:
            logger.warning(f"Pull of {reference} timed out: {e}")
            return PullOutcome.ERROR
        except Exception as e:
            outcome = classify_pull_error(e)
            if outcome is PullOutcome.ERROR:
                logger.warning(f"Pull of {reference} failed: {e}")
            return outcome

    async def inspect_local_image(self, reference: str) -> Optional[ImageIdentity]:
        try:
            image = await async_docker_call(
                self.client.images.get, reference, call_timeout=self.call_timeout
            )
        except docker.errors.ImageNotFound:
            return None
        except asyncio.TimeoutError as e:
            raise EngineError(f"Engine call timed out after {self.call_timeout}s") from e
        except docker.errors.DockerException as e:
            raise EngineError(str(e), status_code=getattr(e, 'status_code', None)) from e
        return ImageIdentity(reference=reference, content_id=image.id)

    async def create_container(self, plan: ReplacementPlan) -> str:
        """
        Create the replacement using the low-level API so HostConfig is
        passed through untouched (ports, mounts, devices, restart policy).
        """
        kwargs = self.build_create_kwargs(plan)
        response = await self._call(self.client.api.create_container, **kwargs)
        return response['Id']

    def build_create_kwargs(self, plan: ReplacementPlan) -> Dict[str, Any]:
        """
        Creation parameters: the old runtime config with name and image forced
        to the plan's target name and image reference.
        """
        runtime = plan.runtime_config
        config = runtime.get('Config') or {}
        host_config = dict(runtime.get('HostConfig') or {})
        network_mode = host_config.get('NetworkMode') or ''
        shares_namespace = network_mode.startswith('container:')

        exposed_ports = config.get('ExposedPorts')
        ports = list(exposed_ports.keys()) if isinstance(exposed_ports, dict) else None

        create_kwargs = {
            'image': plan.image,
            'name': plan.target_name,
            'command': config.get('Cmd'),
            'entrypoint': config.get('Entrypoint'),
            'environment': config.get('Env'),
            'working_dir': config.get('WorkingDir'),
            'user': config.get('User'),
            'labels': config.get('Labels'),
            'volumes': config.get('Volumes'),
            'ports': ports,
            'healthcheck': config.get('Healthcheck'),
            'stop_signal': config.get('StopSignal'),
            'domainname': config.get('Domainname'),
            'hostname': None if shares_namespace else config.get('Hostname'),
            'mac_address': None if shares_namespace else config.get('MacAddress'),
            'tty': config.get('Tty', False),
            'stdin_open': config.get('OpenStdin', False),
            'host_config': host_config or None,
            'networking_config': self._networking_config(runtime, network_mode),
        }
        return {key: value for key, value in create_kwargs.items() if value is not None}

    @staticmethod
    def _networking_config(runtime: Dict[str, Any], network_mode: str) -> Optional[Dict[str, Any]]:
        """Carry over the primary network's aliases and static addresses."""
        networks = (runtime.get('NetworkSettings') or {}).get('Networks') or {}
        if not networks or network_mode in ('', 'default', 'bridge', 'host', 'none') or network_mode.startswith('container:'):
            return None

        endpoint = networks.get(network_mode)
        if not endpoint:
            return None

        ipam = endpoint.get('IPAMConfig') or {}
        endpoint_config = {
            'Aliases': endpoint.get('Aliases'),
            'Links': endpoint.get('Links'),
            'IPAMConfig': {k: v for k, v in ipam.items() if v} or None,
        }
        endpoint_config = {k: v for k, v in endpoint_config.items() if v}
        return {'EndpointsConfig': {network_mode: endpoint_config}}

    async def start(self, name: str) -> None:
        await self._call(self.client.api.start, name)

    async def stop(self, name: str) -> None:
        await self._call(self.client.api.stop, name, timeout=self.stop_timeout)

    async def rename(self, name: str, new_name: str) -> None:
        await self._call(self.client.api.rename, name, new_name)

    async def remove(self, name: str) -> None:
        await self._call(self.client.api.remove_container, name)

# nodescope/collector/gadget.py - Remote trace through Inspektor Gadget
"""
Runs a trace gadget in the Inspektor Gadget DaemonSet pod on this node and
collects its output stream.

The trace is a `Trace` custom resource in the gadget namespace. Its output is
read by exec'ing the gadget tracer manager in the node's gadget pod; the
stream ends once the trace resource is deleted.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, List

from kubernetes import client
from kubernetes.client.rest import ApiException
from kubernetes.stream import stream

from nodescope.collector.base import Collector, check_linux
from nodescope.errors import CollectError, UnsupportedEnvironmentError
from nodescope.utils.runtime_info import RuntimeInfo


GADGET_GROUP = 'gadget.kinvolk.io'
GADGET_VERSION = 'v1alpha1'
GADGET_NAMESPACE = 'gadget'
GADGET_CRD = 'traces.gadget.kinvolk.io'
GADGET_OPERATION = 'gadget.kinvolk.io/operation'


class GadgetTraceCollector(Collector):
    """
    One trace gadget (e.g. "dns", "tcptracer") for the collection window.
    """

    def __init__(self, gadget_name: str, api_client: client.ApiClient,
                 runtime_info: RuntimeInfo, waiter: Callable[[], None]):
        """
        Args:
            gadget_name: Inspektor Gadget gadget to run
            api_client: Kubernetes API client
            runtime_info: Node identity
            waiter: Blocks for the collection window
        """
        self.gadget_name = gadget_name
        self.api_client = api_client
        self.runtime_info = runtime_info
        self.waiter = waiter
        self.data: Dict[str, str] = {}
        self.logger = logging.getLogger(__name__)

    def get_name(self) -> str:
        return f"gadget-{self.gadget_name}"

    @property
    def trace_name(self) -> str:
        # At most one trace per gadget per node
        return f"{self.gadget_name}-{self.runtime_info.host_node_name}"

    def check_supported(self):
        check_linux(self.runtime_info)

        api = client.ApiextensionsV1Api(self.api_client)
        try:
            crds = api.list_custom_resource_definition()
        except ApiException as e:
            raise UnsupportedEnvironmentError(f"error listing CRDs in cluster: {e.reason}") from e

        if not any(GADGET_CRD in crd.metadata.name for crd in crds.items):
            raise UnsupportedEnvironmentError("does not contain gadget crd")

    def _trace_body(self) -> Dict:
        return {
            'apiVersion': f"{GADGET_GROUP}/{GADGET_VERSION}",
            'kind': 'Trace',
            'metadata': {
                'name': self.trace_name,
                'namespace': GADGET_NAMESPACE,
                'annotations': {GADGET_OPERATION: 'start'},
            },
            'spec': {
                'node': self.runtime_info.host_node_name,
                'gadget': self.gadget_name,
                'runMode': 'Manual',
                'outputMode': 'Stream',
            },
        }

    def _gadget_pod_name(self) -> str:
        core = client.CoreV1Api(self.api_client)
        pods = core.list_namespaced_pod(
            GADGET_NAMESPACE,
            field_selector=f"spec.nodeName={self.runtime_info.host_node_name}",
        )
        if not pods.items:
            raise CollectError(self.get_name(),
                               f"no gadget pod found on node {self.runtime_info.host_node_name!r}")

        return pods.items[0].metadata.name

    def _stream_command(self) -> List[str]:
        return ['./bin/gadgettracermanager', '-call', 'receive-stream',
                '-tracerid', f"trace_gadget_{self.trace_name}"]

    def _receive_stream(self, pod_name: str) -> str:
        core = client.CoreV1Api(self.api_client)
        resp = stream(
            core.connect_get_namespaced_pod_exec,
            pod_name,
            GADGET_NAMESPACE,
            command=self._stream_command(),
            stderr=True, stdin=False, stdout=True, tty=False,
            _preload_content=False,
        )

        stdout, stderr = [], []
        self.logger.info(f"Collecting trace stream {self.trace_name} from pod {pod_name}")
        while resp.is_open():
            resp.update(timeout=1)
            if resp.peek_stdout():
                stdout.append(resp.read_stdout())
            if resp.peek_stderr():
                stderr.append(resp.read_stderr())
        resp.close()

        self.logger.info(f"Collected trace stream {self.trace_name} from pod {pod_name}")
        return ''.join(stdout).strip() + "\n" + ''.join(stderr).strip()

    def collect(self):
        custom = client.CustomObjectsApi(self.api_client)
        try:
            custom.create_namespaced_custom_object(
                GADGET_GROUP, GADGET_VERSION, GADGET_NAMESPACE, 'traces', self._trace_body())
        except ApiException as e:
            raise CollectError(self.get_name(), f"could not create trace {self.trace_name}: {e.reason}") from e

        try:
            pod_name = self._gadget_pod_name()
            with ThreadPoolExecutor(max_workers=1) as executor:
                future = executor.submit(self._receive_stream, pod_name)
                try:
                    self.waiter()
                finally:
                    # Deleting the trace ends the stream
                    self._delete_trace(custom)
                result = future.result()
        except ApiException as e:
            raise CollectError(self.get_name(), f"error executing trace stream: {e.reason}") from e
        finally:
            self._delete_trace(custom)

        self.data[self.get_name()] = result

    def _delete_trace(self, custom: client.CustomObjectsApi):
        try:
            custom.delete_namespaced_custom_object(
                GADGET_GROUP, GADGET_VERSION, GADGET_NAMESPACE, 'traces', self.trace_name)
        except ApiException as e:
            if e.status != 404:
                self.logger.warning(f"Could not delete trace {self.trace_name}: {e.reason}")

    def get_data(self) -> Dict[str, str]:
        return self.data

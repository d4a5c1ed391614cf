"""VMware vSphere/vCenter client connection and VM lookup."""

from __future__ import annotations

import atexit
import ssl
import time
from typing import Optional

from pyVim.connect import Disconnect, SmartConnect
from pyVmomi import vim

from vmware2azure.errors import SourceVMError
from vmware2azure.utils.logging import get_logger

logger = get_logger(__name__)


class VSphereClient:
    """Manages connection to a VMware vSphere/vCenter instance.

    Uses pyvmomi to connect via the vSphere API. Supports:
    - SSL certificate verification bypass (common in enterprise)
    - Automatic retry with exponential backoff
    - Session management with cleanup on exit
    """

    def __init__(self):
        self._si: Optional[vim.ServiceInstance] = None
        self._content: Optional[vim.ServiceInstanceContent] = None
        self._host: str = ""

    @property
    def content(self) -> vim.ServiceInstanceContent:
        if self._content is None:
            raise SourceVMError("Not connected to vCenter. Call connect() first.")
        return self._content

    @property
    def connected(self) -> bool:
        return self._si is not None

    def connect(
        self,
        host: str,
        username: str,
        password: str,
        port: int = 443,
        insecure: bool = False,
        max_retries: int = 3,
    ) -> vim.ServiceInstance:
        """Connect to vCenter/vSphere with retry logic.

        Raises:
            SourceVMError: If all connection attempts fail
        """
        self._host = host
        ssl_context = None
        if insecure:
            ssl_context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
            ssl_context.check_hostname = False
            ssl_context.verify_mode = ssl.CERT_NONE

        last_error = None
        for attempt in range(1, max_retries + 1):
            try:
                logger.info(f"Connecting to vCenter {host} (attempt {attempt}/{max_retries})")
                self._si = SmartConnect(
                    host=host,
                    user=username,
                    pwd=password,
                    port=port,
                    sslContext=ssl_context,
                )
                self._content = self._si.RetrieveContent()
                atexit.register(Disconnect, self._si)

                logger.info(f"Connected to vCenter: {host} "
                            f"(API version: {self._content.about.apiVersion})")
                return self._si

            except Exception as e:
                last_error = e
                if attempt < max_retries:
                    delay = 2 ** attempt
                    logger.warning(f"Connection failed: {e}. Retrying in {delay}s...")
                    time.sleep(delay)
                else:
                    logger.error(f"All {max_retries} connection attempts failed")

        raise SourceVMError(f"Failed to connect to vCenter {host}", str(last_error))

    def disconnect(self):
        """Gracefully disconnect from vCenter."""
        if self._si:
            try:
                Disconnect(self._si)
                logger.info(f"Disconnected from vCenter: {self._host}")
            except Exception as e:
                logger.warning(f"Error during disconnect: {e}")
            finally:
                self._si = None
                self._content = None

    def find_vm(self, vm_name: str) -> vim.VirtualMachine:
        """Look up a VM by exact name.

        Raises:
            SourceVMError: If no VM has that name
        """
        view = self.content.viewManager.CreateContainerView(
            self.content.rootFolder, [vim.VirtualMachine], True
        )
        try:
            for vm in view.view:
                if vm.name == vm_name:
                    return vm
        finally:
            view.Destroy()
        raise SourceVMError(f"VM '{vm_name}' not found on {self._host}")

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.disconnect()

"""
=============================================================================
SCGI GATEWAY SERVER
=============================================================================

Ties the components together:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   SocketServer ──► ThreadPool ──► _process_connection(conn)          │
    │                                        │                             │
    │                                        ├──► scgi.decode(conn)        │
    │                                        ├──► handle_request(headers)  │
    │                                        │       └──► retrieve(...)    │
    │                                        │       └──► format_outcome() │
    │                                        ├──► conn.send_response()     │
    │                                        └──► conn.close()             │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
REQUEST LIFECYCLE
=============================================================================

    1. FRONT-END CONNECTS
       └── SocketServer accepts on the Unix socket (or TCP)

    2. QUEUE FOR PROCESSING
       └── Queue full → "42 Server overloaded." and close

    3. DECODE (Worker Thread)
       └── Bad frame → "42 <reason>"

    4. DISPATCH
       └── No PATH_INFO → "59 Missing key." (no lookup at all)
       └── Otherwise the retrieval pipeline runs

    5. RESPOND AND CLOSE
       └── Always exactly one response, then the connection is closed

The key store, IPFS client and decryptor are built once at startup and
only read by the workers.

=============================================================================
SINGLE-SHOT MODE
=============================================================================

CgiGateway runs the same dispatch for a single request taken from the
process environment (PATH_INFO) and writes the response to stdout. A
failure before the request can be handled (unreadable keys file, bad IPFS
address) is still reported as a 42 response, since stdout is the only
channel back to the front-end.

=============================================================================
"""

import logging
import os
import sys
import time
from typing import BinaryIO, Mapping, Optional

from .access_log import AccessLog, RequestLog
from .config import GatewayConfig
from .core import Connection, SocketServer, ThreadPool
from .crypto import JWEDecryptor
from .errors import GatewayError, ScgiParseError
from .ipfs import IpfsClient
from .keystore import KeyStore
from .pipeline import Decryptor, Fetcher, retrieve
from .protocol import GeminiResponse, GeminiStatus, error, format_outcome, scgi


logger = logging.getLogger(__name__)


MISSING_KEY_MESSAGE = "Missing key."
OVERLOADED_MESSAGE = "Server overloaded."


def dispatch(
    store: KeyStore,
    fetcher: Fetcher,
    decryptor: Decryptor,
    key_id: Optional[str],
) -> GeminiResponse:
    """
    Answer one request for key_id.

    Shared by the listener and single-shot modes. Expected failures come
    back as error responses; only programming errors raise.
    """
    if not key_id:
        return error(GeminiStatus.BAD_REQUEST, MISSING_KEY_MESSAGE)
    return format_outcome(retrieve(store, fetcher, decryptor, key_id))


class ScgiGateway:
    """
    Long-lived SCGI listener.

    Usage:
        gateway = ScgiGateway.from_config(config)
        gateway.run()  # Blocks until SIGINT/SIGTERM

    Tests build it directly with fakes:
        gateway = ScgiGateway(config, store, fetcher, decryptor)
    """

    def __init__(
        self,
        config: GatewayConfig,
        store: KeyStore,
        fetcher: Fetcher,
        decryptor: Decryptor,
        access_log: Optional[AccessLog] = None,
    ):
        self.config = config
        self.store = store
        self.fetcher = fetcher
        self.decryptor = decryptor
        self.access_log = access_log or AccessLog(config.log_format)

        self._socket_server = SocketServer(config)
        self._thread_pool = ThreadPool(
            min_workers=config.min_workers,
            max_workers=config.max_workers,
            queue_size=config.queue_size,
        )
        self._running = False

    @classmethod
    def from_config(cls, config: GatewayConfig) -> "ScgiGateway":
        """
        Build a gateway with its real collaborators.

        Loads the key store and checks that the IPFS API answers, so a
        misconfigured gateway fails here instead of on the first request.

        Raises:
            KeyLoadError: Keys file unreadable or malformed.
            AddressError: IPFS API address cannot be parsed.
            FetchError: IPFS API unreachable.
        """
        store = KeyStore.load(config.keys_file)
        client = IpfsClient(config.ipfs_api, timeout=config.fetch_timeout)
        version = client.check_connection()
        logger.info(f"Connected to IPFS {version} at {client.base_url}")
        return cls(config, store, client, JWEDecryptor())

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def address(self):
        return self._socket_server.address

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        return self._socket_server.wait_until_ready(timeout)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def run(self):
        """
        Start serving. Blocks until stop() or a shutdown signal.

        Raises:
            OSError: If the listener cannot be bound.
        """
        self._thread_pool.start()
        self._running = True
        logger.info(
            f"Serving {len(self.store)} keys on {self.config.listen_address} "
            f"({self.config.min_workers}-{self.config.max_workers} workers)"
        )

        try:
            self._socket_server.start(self._handle_connection)
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")
        finally:
            self._shutdown()

    def stop(self):
        """Ask a running gateway to stop. Safe from any thread."""
        self._socket_server.shutdown()

    def _shutdown(self):
        logger.info("Shutting down gateway...")
        self._running = False
        self._thread_pool.shutdown(wait=True, timeout=30.0)
        logger.info("Gateway stopped")

    # =========================================================================
    # REQUEST HANDLING
    # =========================================================================

    def _handle_connection(self, conn: Connection):
        """Called on the accept thread for every new connection."""
        submitted = self._thread_pool.submit(self._process_connection, args=(conn,))

        if not submitted:
            logger.warning(f"[{conn.id}] Thread pool full, rejecting connection")
            self._send_error(conn, GeminiStatus.CGI_ERROR, OVERLOADED_MESSAGE)
            conn.close()

    def handle_request(self, headers: scgi.FramedRequest) -> GeminiResponse:
        return dispatch(self.store, self.fetcher, self.decryptor, headers.path_info)

    def _process_connection(self, conn: Connection):
        """Runs on a worker thread. Exactly one response, then close."""
        start_time = time.time()
        key_id = ""

        with conn:
            try:
                headers = scgi.decode(conn, self.config.max_header_size)
                key_id = headers.path_info
                conn.mark_processing()
                response = self.handle_request(headers)

            except ScgiParseError as e:
                logger.warning(f"[{conn.id}] Bad request frame: {e}")
                response = error(GeminiStatus(e.status_code), str(e))

            except TimeoutError:
                logger.warning(f"[{conn.id}] Timed out reading request")
                response = error(GeminiStatus.CGI_ERROR, "Request timeout.")

            except Exception as e:
                logger.exception(f"[{conn.id}] Request failed: {e}")
                response = error(GeminiStatus.CGI_ERROR, "Internal error.")

            conn.send_response(response.to_bytes())

        self.access_log.record(RequestLog(
            connection_id=conn.id,
            peer=conn.peer,
            key_id=key_id,
            status=int(response.status),
            body_length=len(response.body),
            duration_ms=(time.time() - start_time) * 1000,
        ))

    def _send_error(self, conn: Connection, status: GeminiStatus, message: str):
        """Best-effort error response for connections we never decode."""
        conn.send_response(error(status, message).to_bytes())


class CgiGateway:
    """
    Single-shot gateway: one request from the environment, one response
    on stdout.

        gateway = CgiGateway(store, fetcher, decryptor)
        gateway.run(os.environ, sys.stdout.buffer)
    """

    def __init__(
        self,
        store: KeyStore,
        fetcher: Fetcher,
        decryptor: Decryptor,
        access_log: Optional[AccessLog] = None,
    ):
        self.store = store
        self.fetcher = fetcher
        self.decryptor = decryptor
        self.access_log = access_log or AccessLog()

    @classmethod
    def from_config(cls, config: GatewayConfig) -> "CgiGateway":
        """
        Raises:
            KeyLoadError: Keys file unreadable or malformed.
            AddressError: IPFS API address cannot be parsed.
        """
        store = KeyStore.load(config.keys_file)
        client = IpfsClient(config.ipfs_api, timeout=config.fetch_timeout)
        return cls(store, client, JWEDecryptor(), AccessLog(config.log_format))

    def respond(self, environ: Mapping[str, str]) -> GeminiResponse:
        return dispatch(self.store, self.fetcher, self.decryptor, environ.get("PATH_INFO"))

    def run(self, environ: Mapping[str, str], stdout: BinaryIO) -> GeminiResponse:
        start_time = time.time()
        try:
            response = self.respond(environ)
        except Exception as e:
            logger.exception(f"Request failed: {e}")
            response = error(GeminiStatus.CGI_ERROR, "Internal error.")

        write_response(stdout, response)

        self.access_log.record(RequestLog(
            connection_id="cgi",
            peer="cgi",
            key_id=environ.get("PATH_INFO", ""),
            status=int(response.status),
            body_length=len(response.body),
            duration_ms=(time.time() - start_time) * 1000,
        ))
        return response


def write_response(stdout: BinaryIO, response: GeminiResponse):
    stdout.write(response.to_bytes())
    stdout.flush()


def handle_cgi(
    config: GatewayConfig,
    environ: Optional[Mapping[str, str]] = None,
    stdout: Optional[BinaryIO] = None,
) -> GeminiResponse:
    """
    Serve one request in single-shot mode.

    Startup failures are written to stdout as a 42 response and returned,
    never raised.
    """
    environ = os.environ if environ is None else environ
    stdout = sys.stdout.buffer if stdout is None else stdout

    try:
        gateway = CgiGateway.from_config(config)
    except GatewayError as e:
        logger.error(f"Startup failed: {e}")
        response = error(GeminiStatus.CGI_ERROR, str(e))
        write_response(stdout, response)
        return response

    return gateway.run(environ, stdout)

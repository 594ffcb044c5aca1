# src/rustowl_client/lsp/client.py

"""Provides an asynchronous client for the RustOwl language server.

This module defines the `OwlLspClient` class, responsible for managing a
RustOwl server subprocess, handling Language Server Protocol (LSP)
communication over stdio (JSON-RPC with Content-Length headers), managing
request/response correlation, and reporting transport health (protocol errors,
unexpected closure) to whoever owns the client through an event sink.
"""

import asyncio
import json
import logging
import os
import pathlib
from typing import Any, Callable, Dict, Optional

from rustowl_client.lsp.protocol import (
    ANALYZE_METHOD,
    CURSOR_METHOD,
    EXECUTE_COMMAND_METHOD,
    Position,
    cursor_params,
    toggle_ownership_params,
)
from rustowl_client.session.transitions import ProtocolError, SessionEvent, TransportClosed

logger = logging.getLogger(__name__)

# --- Constants ---
CONTENT_LENGTH_HEADER = b"Content-Length: "
HEADER_SEPARATOR = b"\r\n\r\n"
DEFAULT_LSP_TIMEOUT = 30  # Seconds for typical LSP request/response
MAX_HEADER_BYTES = 4096
METHOD_NOT_FOUND = -32601

# Server-to-client requests we acknowledge with a null result.
ACKNOWLEDGED_SERVER_REQUESTS = {
    "window/workDoneProgress/create",
    "client/registerCapability",
    "client/unregisterCapability",
}

EventSink = Callable[[SessionEvent], None]


# --- Custom Exception ---


class LspResponseError(Exception):
    """Custom exception for LSP error responses.

    Attributes:
        code (Any): The error code from the LSP response. Defaults to "Unknown".
        message (str): The error message from the LSP response. Defaults to
            "Unknown error".
        data (Any): Optional additional data provided with the error.
    """

    def __init__(self, error_payload: Dict[str, Any]):
        """Initializes LspResponseError.

        Args:
            error_payload (Dict[str, Any]): The 'error' object from the LSP response.
        """
        self.code = error_payload.get("code", "Unknown")
        self.message = error_payload.get("message", "Unknown error")
        self.data = error_payload.get("data")
        super().__init__(f"LSP Error Code {self.code}: {self.message}")


class _FramingError(Exception):
    """A message on the wire could not be framed or decoded."""


# --- LSP Client Class ---


class OwlLspClient:
    """Manages communication with a RustOwl server process via LSP over stdio.

    Handles process startup, message framing, request/response correlation and
    lifecycle (`initialize` / `shutdown` / `exit`). Transport trouble is not
    handled here beyond cleanup: it is reported to `event_sink` as
    `ProtocolError` (a malformed frame or undecodable body) or
    `TransportClosed` (the server went away without us closing it). Events
    carry `generation` so the owner can ignore a client it already replaced.

    Attributes:
        command (str): Path or name of the server executable.
        cwd (str): Working directory (workspace root) for the server process.
        timeout (float): Default timeout in seconds for LSP requests.
        generation (int): Identifier assigned by the owner of this client.
        process (Optional[asyncio.subprocess.Process]): The server subprocess,
            set by `start_server()`.
        writer (Optional[asyncio.StreamWriter]): Stream connected to the
            server's standard input.
        reader (Optional[asyncio.StreamReader]): Stream connected to the
            server's standard output.
    """

    def __init__(
        self,
        command: str,
        cwd: str,
        timeout: float = DEFAULT_LSP_TIMEOUT,
        event_sink: Optional[EventSink] = None,
        generation: int = 0,
    ):
        """Initializes the OwlLspClient.

        Args:
            command (str): The server executable. It is started without
                arguments, which makes it speak LSP on stdio.
            cwd (str): The workspace directory the server runs in.
            timeout (float): Default request timeout in seconds.
            event_sink (Optional[EventSink]): Receives transport health events.
            generation (int): Tag copied into every emitted event.
        """
        self.command = command
        self.cwd = cwd
        self.timeout = timeout
        self.generation = generation
        self.process: Optional[asyncio.subprocess.Process] = None
        self.writer: Optional[asyncio.StreamWriter] = None
        self.reader: Optional[asyncio.StreamReader] = None
        self._event_sink = event_sink
        self._message_id_counter = 1
        self._pending_requests: Dict[int, asyncio.Future] = {}
        self._reader_task: Optional[asyncio.Task] = None
        self._stderr_task: Optional[asyncio.Task] = None
        self._closed = False
        self._closing = False
        self.server_capabilities: Dict[str, Any] = {}

    @property
    def is_running(self) -> bool:
        return not self._closed and self.process is not None and self.process.returncode is None

    def _emit(self, event: SessionEvent) -> None:
        if self._event_sink is None or self._closing:
            return
        try:
            self._event_sink(event)
        except Exception as e:
            logger.exception(f"Event sink failed for {event!r}: {e}")

    async def start_server(self) -> None:
        """Starts the server subprocess and the background reader tasks.

        Raises:
            FileNotFoundError: If the server executable does not exist.
            ConnectionError: If the subprocess fails to start or its pipes are
                unavailable.
        """
        if self.process and self.process.returncode is None:
            logger.warning("RustOwl server process already running.")
            return

        logger.info(f"Starting RustOwl server: {self.command} in {self.cwd}")
        try:
            self.process = await asyncio.create_subprocess_exec(
                self.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.cwd,
                env=os.environ.copy(),
            )
            self.reader = self.process.stdout
            self.writer = self.process.stdin
            if not self.reader or not self.writer:
                raise ConnectionError("Failed to get stdout/stdin streams from subprocess.")

            self._stderr_task = asyncio.create_task(self._read_stderr(), name="lsp_stderr_reader")
            self._reader_task = asyncio.create_task(self._message_reader_loop(), name="lsp_message_reader")
            logger.info(f"RustOwl server started (pid {self.process.pid}).")
        except FileNotFoundError:
            logger.error(f"RustOwl executable not found at '{self.command}'.")
            raise
        except Exception as e:
            logger.exception(f"Failed to start RustOwl server: {e}")
            await self.close()
            raise ConnectionError(f"Failed to start RustOwl server: {e}") from e

    async def _read_stderr(self) -> None:
        """Forwards the server's stderr to the log, line by line, at warning level."""
        if not self.process or not self.process.stderr:
            logger.warning("Stderr stream not available for reading.")
            return
        try:
            while True:
                line = await self.process.stderr.readline()
                if not line:
                    logger.debug("Stderr stream EOF reached.")
                    break
                logger.warning(f"RustOwl Server STDERR: {line.decode('utf-8', errors='replace').strip()}")
        except asyncio.CancelledError:
            logger.debug("Stderr reader task cancelled.")
        except Exception as e:
            if not self._closed:
                logger.error(f"Error reading RustOwl server stderr: {e}")

    async def _read_message(self) -> Dict[str, Any]:
        """Reads a single LSP message (header + JSON body) from the server's stdout.

        Header reads wait indefinitely since an idle server is normal; only the
        body read, once a header has announced it, is bounded by the timeout.

        Returns:
            Dict[str, Any]: The parsed JSON message.

        Raises:
            _FramingError: If the header or body is malformed. The stream stays
                usable when the announced body length was consumed.
            ConnectionError: If the stream ends or breaks.
        """
        if not self.reader:
            raise ConnectionError("LSP reader is not available.")

        header_lines_bytes = bytearray()
        try:
            while True:
                line_bytes = await self.reader.readline()
                if not line_bytes:
                    raise asyncio.IncompleteReadError(bytes(header_lines_bytes), None)
                header_lines_bytes.extend(line_bytes)
                if line_bytes in (b"\r\n", b"\n"):
                    break
                if len(header_lines_bytes) > MAX_HEADER_BYTES:
                    raise ConnectionError("Excessively long LSP header received.")

            header_str = header_lines_bytes.decode("ascii", errors="replace")
            content_length = -1
            for h_line in header_str.splitlines():
                if h_line.lower().startswith("content-length:"):
                    try:
                        content_length = int(h_line.split(":", 1)[1].strip())
                    except ValueError:
                        raise _FramingError(f"Invalid Content-Length value: {h_line!r}")
                    break
            if content_length < 0:
                raise _FramingError(f"Content-Length header not found in received headers: {header_str!r}")

            json_body_bytes = await asyncio.wait_for(
                self.reader.readexactly(content_length), timeout=self.timeout
            )
        except asyncio.IncompleteReadError as e:
            raise ConnectionError("LSP connection closed unexpectedly.") from e
        except asyncio.TimeoutError as e:
            raise ConnectionError(f"Timeout reading LSP message body (timeout={self.timeout}s).") from e

        try:
            message = json.loads(json_body_bytes.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise _FramingError(f"Failed to decode JSON from server: {e}") from e
        if not isinstance(message, dict):
            raise _FramingError(f"LSP message is not an object: {message!r}")
        return message

    async def _message_reader_loop(self) -> None:
        """Continuously reads and dispatches messages from the server's stdout.

        Runs as a background task started by `start_server`. For each message:

        1.  Responses (``id`` without ``method``) resolve the matching pending
            Future, with `LspResponseError` if the response carries an error.
        2.  Notifications (``method`` without ``id``) are logged.
        3.  Server-to-client requests are answered: known housekeeping
            requests get a null result, anything else MethodNotFound.

        A framing error emits `ProtocolError` and the loop continues. When the
        stream ends without us having closed the client, `TransportClosed` is
        emitted. On exit all pending requests are cancelled.
        """
        logger.debug("Starting LSP message reader loop.")
        closed_reason: Optional[str] = None
        try:
            while not self._closed:
                try:
                    message = await self._read_message()
                except _FramingError as e:
                    logger.error(str(e))
                    self._emit(ProtocolError(str(e), generation=self.generation))
                    continue
                except ConnectionError as e:
                    if not self._closed:
                        logger.warning(f"Connection error in reader loop: {e}")
                        closed_reason = str(e)
                    break
                await self._dispatch(message)
        except asyncio.CancelledError:
            logger.debug("LSP message reader loop cancelled.")
        except Exception as e:
            if not self._closed:
                logger.exception(f"Unexpected error in LSP message reader loop: {e}")
                closed_reason = f"Unexpected reader error: {e}"
        finally:
            logger.info("LSP message reader loop finished.")
            for req_id, future in list(self._pending_requests.items()):
                if not future.done():
                    future.set_exception(ConnectionError(f"LSP reader loop exited while request {req_id} was pending."))
                self._pending_requests.pop(req_id, None)
            if closed_reason is not None and not self._closing:
                self._emit(TransportClosed(closed_reason, generation=self.generation))

    async def _dispatch(self, message: Dict[str, Any]) -> None:
        msg_id = message.get("id")
        msg_method = message.get("method")

        if msg_id is not None and msg_method is None:
            try:
                request_id = int(msg_id)
            except (TypeError, ValueError):
                logger.warning(f"Received response with non-integer ID '{msg_id}', ignoring.")
                return
            future = self._pending_requests.pop(request_id, None)
            if future is None:
                logger.warning(f"Received response for ID {request_id}, but it was not pending.")
            elif future.done():
                logger.debug(f"Received response for already finished request ID {request_id}")
            elif "error" in message:
                logger.debug(f"Received error response for ID {request_id}")
                error = message["error"] if isinstance(message["error"], dict) else {"message": str(message["error"])}
                future.set_exception(LspResponseError(error))
            else:
                logger.debug(f"Received result response for ID {request_id}")
                future.set_result(message.get("result"))

        elif msg_method is not None and msg_id is None:
            logger.debug(f"Received notification: {msg_method}")
            if msg_method == "window/logMessage":
                logger.info(f"RustOwl server: {message.get('params', {}).get('message', '')}")

        elif msg_method is not None and msg_id is not None:
            if msg_method in ACKNOWLEDGED_SERVER_REQUESTS:
                logger.debug(f"Acknowledging server request {msg_method} (ID {msg_id}).")
                reply: Dict[str, Any] = {"jsonrpc": "2.0", "id": msg_id, "result": None}
            else:
                logger.warning(f"Received unsupported request from server (Method: {msg_method}, ID: {msg_id}).")
                reply = {
                    "jsonrpc": "2.0",
                    "id": msg_id,
                    "error": {"code": METHOD_NOT_FOUND, "message": f"Unsupported method {msg_method}"},
                }
            try:
                await self._write_message(reply)
            except ConnectionError as e:
                logger.warning(f"Could not reply to server request {msg_id}: {e}")

        else:
            logger.warning(f"Received message with unknown structure: {message}")

    async def _write_message(self, message: Dict[str, Any]) -> None:
        """Formats and writes a JSON-RPC message to the server's stdin.

        Args:
            message (Dict[str, Any]): The request, response or notification
                payload to be sent.

        Raises:
            ConnectionError: If the writer is unavailable or the pipe breaks.
        """
        if not self.writer or self.writer.is_closing():
            raise ConnectionError("LSP writer is not available or closing.")

        json_body = json.dumps(message).encode("utf-8")
        header = CONTENT_LENGTH_HEADER + str(len(json_body)).encode("ascii") + HEADER_SEPARATOR
        try:
            self.writer.write(header)
            self.writer.write(json_body)
            await self.writer.drain()
        except (ConnectionResetError, BrokenPipeError) as e:
            logger.error(f"Connection error writing LSP message: {e}")
            raise ConnectionError(f"Connection error writing LSP message: {e}") from e

    async def send_request(self, method: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Sends an LSP request and waits asynchronously for its response.

        Args:
            method (str): The LSP method name (e.g., "initialize", "rustowl/cursor").
            params (Optional[Dict[str, Any]]): Request parameters. Defaults to
                an empty dictionary.

        Returns:
            Any: The 'result' field from the LSP response payload. Can be None if
                 the server explicitly returns null.

        Raises:
            ConnectionError: If the client is closed, the server is not running,
                or the connection fails while the request is outstanding.
            asyncio.TimeoutError: If no response arrives within `timeout`.
            LspResponseError: If the server returns an error response.
            asyncio.CancelledError: If the caller is cancelled while waiting.
        """
        if self._closed:
            raise ConnectionError("Client is closed.")
        if not self.process or self.process.returncode is not None:
            raise ConnectionError("RustOwl server process is not running.")

        request_id = self._message_id_counter
        self._message_id_counter += 1
        request = {
            "jsonrpc": "2.0",
            "id": request_id,
            "method": method,
            "params": params if params is not None else {},
        }
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending_requests[request_id] = future

        try:
            logger.debug(f"Sending request {request_id}: {method}")
            await self._write_message(request)
            return await asyncio.wait_for(future, timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error(f"Timeout waiting for response to request {request_id} ({method}).")
            raise
        except asyncio.CancelledError:
            logger.debug(f"Request {request_id} ({method}) was cancelled.")
            raise
        except LspResponseError as e:
            logger.warning(f"Request {request_id} ({method}) failed with LSP Error: {e}")
            raise
        except ConnectionError as e:
            logger.error(f"Connection error during request {request_id} ({method}): {e}")
            raise
        finally:
            self._pending_requests.pop(request_id, None)

    async def send_notification(self, method: str, params: Optional[Dict[str, Any]] = None) -> None:
        """Sends an LSP notification (fire-and-forget).

        Raises:
            ConnectionError: If the client is closed, the server process is not
                running, or writing fails.
        """
        if self._closed:
            raise ConnectionError("Client is closed.")
        if not self.process or self.process.returncode is not None:
            raise ConnectionError("RustOwl server process is not running.")

        notification = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params if params is not None else {},
        }
        logger.debug(f"Sending notification: {method}")
        await self._write_message(notification)

    async def initialize(self) -> Dict[str, Any]:
        """Performs the LSP initialization handshake.

        Sends `initialize` with the workspace root and basic capabilities,
        waits for the result, then sends `initialized`.

        Returns:
            Dict[str, Any]: The server capabilities (empty if none were sent).

        Raises:
            ConnectionError: If the handshake fails for any reason. The client
                is closed in that case.
        """
        logger.info("Sending LSP initialize request.")
        root_uri = pathlib.Path(self.cwd).resolve().as_uri()
        init_params = {
            "processId": os.getpid(),
            "clientInfo": {"name": "rustowl-client"},
            "rootUri": root_uri,
            "capabilities": {
                "textDocument": {
                    "synchronization": {"dynamicRegistration": False, "didSave": True},
                    "publishDiagnostics": {"relatedInformation": False},
                },
                "window": {"workDoneProgress": True},
                "workspace": {"workspaceFolders": True},
            },
            "trace": "off",
            "workspaceFolders": [{"uri": root_uri, "name": os.path.basename(os.path.abspath(self.cwd))}],
        }
        try:
            response = await self.send_request("initialize", init_params)
            await self.send_notification("initialized", {})
        except Exception as e:
            logger.exception(f"LSP Initialization failed: {e}")
            await self.close()
            raise ConnectionError(f"LSP Initialization failed: {e}") from e
        logger.info("LSP Handshake Complete.")
        self.server_capabilities = response.get("capabilities", {}) if isinstance(response, dict) else {}
        return self.server_capabilities

    async def cursor(self, uri: str, position: Position) -> Any:
        """Asks for the decorations at `position`. Returns the raw result."""
        return await self.send_request(CURSOR_METHOD, cursor_params(uri, position))

    async def analyze(self) -> None:
        """Asks the server to re-analyze the whole workspace."""
        await self.send_notification(ANALYZE_METHOD, {})

    async def toggle_ownership(self, uri: str, position: Position) -> Any:
        return await self.send_request(EXECUTE_COMMAND_METHOD, toggle_ownership_params(uri, position))

    async def shutdown(self) -> None:
        """Sends the `shutdown` request; failures are logged, not raised."""
        if self._closed or not self.process or self.process.returncode is not None:
            return
        logger.info("Sending LSP shutdown request.")
        try:
            await self.send_request("shutdown")
        except (ConnectionError, asyncio.TimeoutError, LspResponseError) as e:
            logger.warning(f"Error during LSP shutdown request (proceeding to exit/close): {e}")

    async def exit(self) -> None:
        """Sends the `exit` notification; failures are logged, not raised."""
        if self._closed or not self.process or self.process.returncode is not None:
            return
        logger.info("Sending LSP exit notification.")
        try:
            await self.send_notification("exit")
        except ConnectionError as e:
            logger.warning(f"Connection error during LSP exit notification (may be expected if server stopped quickly): {e}")

    async def close(self) -> None:
        """Closes the connection and terminates the server process.

        Sends `shutdown`/`exit` if the process is alive, cancels the reader
        tasks, closes stdin, terminates (then kills) the process, and fails
        every pending request with `ConnectionError`. No `TransportClosed`
        event is emitted for a close we initiated.

        This method is idempotent.
        """
        if self._closed or self._closing:
            return
        self._closing = True
        logger.info("Closing LSP client connection and terminating server.")

        if self.process and self.process.returncode is None:
            try:
                await asyncio.wait_for(self.shutdown(), timeout=5.0)
            except asyncio.TimeoutError:
                logger.warning("Graceful shutdown timed out, proceeding.")
            await self.exit()
        self._closed = True

        for task in (self._reader_task, self._stderr_task):
            if task and not task.done():
                task.cancel()

        if self.writer and not self.writer.is_closing():
            try:
                self.writer.close()
            except Exception as e:
                logger.warning(f"Error closing LSP writer: {e}")
        self.writer = None
        self.reader = None

        proc = self.process
        if proc and proc.returncode is None:
            try:
                proc.terminate()
                return_code = await asyncio.wait_for(proc.wait(), timeout=5.0)
                logger.info(f"RustOwl server process terminated with code {return_code}.")
            except asyncio.TimeoutError:
                logger.warning("RustOwl server process did not terminate gracefully after 5s, killing.")
                try:
                    proc.kill()
                    await proc.wait()
                except ProcessLookupError:
                    logger.warning("Process already killed or finished.")
            except ProcessLookupError:
                logger.warning("Process already finished before final termination attempt.")
        elif proc:
            await proc.wait()

        for req_id, future in list(self._pending_requests.items()):
            if not future.done():
                future.set_exception(ConnectionError(f"LSP Client closed while request {req_id} was pending."))
            self._pending_requests.pop(req_id, None)

        tasks_to_wait = [t for t in (self._reader_task, self._stderr_task) if t is not None]
        if tasks_to_wait:
            await asyncio.gather(*tasks_to_wait, return_exceptions=True)
        self._reader_task = None
        self._stderr_task = None
        logger.info("LSP client closed.")

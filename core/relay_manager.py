# core/relay_manager.py
import logging
from typing import Optional

from aiohttp import web, hdrs
from multidict import CIMultiDict, MultiDict

from core.config_manager import ConfigManager, get_config
from relay.forwarder import AiohttpClient, Forwarder, DEFAULT_CONNECT_TIMEOUT
from relay.headers import iter_emitted_headers, parse_status_line
from relay.models import InboundRequest, InvalidRequest, RelayResult, UpstreamUnavailable
from relay.translator import DEFAULT_ENDPOINT_PARAM, MULTIPART_CONTENT_TYPE, translate
from utils.port_utils import check_port_availability, get_process_using_port

logger = logging.getLogger(__name__)

FORM_URLENCODED = 'application/x-www-form-urlencoded'


class RelayHandler:
    def __init__(self, forwarder: Optional[Forwarder] = None,
                 endpoint_param: str = DEFAULT_ENDPOINT_PARAM,
                 unknown_caller_ip: str = 'Unknown'):
        """
        Args:
            forwarder: Executes outbound requests
            endpoint_param: Name of the parameter holding the destination URL
            unknown_caller_ip: X-Forwarded-For value when the caller address is unknown
        """
        self.forwarder = forwarder or Forwarder()
        self.endpoint_param = endpoint_param
        self.unknown_caller_ip = unknown_caller_ip

        self.stats = {
            'total_requests': 0,
            'total_responses': 0,
            'invalid_requests': 0,
            'upstream_errors': 0,
            'errors': 0
        }

    async def build_inbound(self, request: web.Request) -> InboundRequest:
        """Builds an InboundRequest from the aiohttp request"""
        method = request.method.upper()
        content_type = request.headers.get(hdrs.CONTENT_TYPE)
        destination = request.query.get(self.endpoint_param)

        body = b''
        form = MultiDict()

        if method == 'POST':
            if (content_type or '').lower().startswith(MULTIPART_CONTENT_TYPE):
                form = MultiDict(await request.post())
                dropped = [k for k, v in form.items() if not isinstance(v, str)]
                if dropped:
                    logger.warning(f"⚠️ File fields are not relayed: {', '.join(dropped)}")
            else:
                body = await request.read()
                if request.content_type == FORM_URLENCODED:
                    # Only used to look up the endpoint, the body is forwarded as is
                    form = MultiDict(await request.post())

            if not destination:
                value = form.get(self.endpoint_param)
                destination = value if isinstance(value, str) else None

        return InboundRequest(
            method=method,
            destination=destination,
            headers=CIMultiDict(request.headers),
            query=MultiDict(request.query),
            body=body,
            form=form,
            caller_ip=request.remote or self.unknown_caller_ip,
            content_type=content_type
        )

    async def handle_http(self, request: web.Request) -> web.StreamResponse:
        self.stats['total_requests'] += 1

        try:
            return await self._relay(request)

        except Exception as e:
            self.stats['errors'] += 1
            logger.error(f"❌ Relay error: {e}", exc_info=True)
            return web.Response(status=500)

    async def _relay(self, request: web.Request) -> web.StreamResponse:
        inbound = await self.build_inbound(request)

        outbound = translate(inbound, self.endpoint_param)
        if isinstance(outbound, InvalidRequest):
            self.stats['invalid_requests'] += 1
            logger.warning(f"⚠️ Bad request from {inbound.caller_ip}: {outbound.reason}")
            return web.Response(status=400)

        logger.info(f"🔁 {outbound.method.value} {outbound.url} (caller {inbound.caller_ip})")
        logger.debug("Outbound headers:\n   " + "\n   ".join(outbound.header_lines()))

        result = await self.forwarder.forward(outbound)
        if isinstance(result, UpstreamUnavailable):
            self.stats['upstream_errors'] += 1
            return web.Response(status=502)

        return self.emit(result)

    def emit(self, result: RelayResult) -> web.Response:
        """Sends the destination response back to the original caller"""
        status = parse_status_line(result.status_line)
        if status is None:
            self.stats['upstream_errors'] += 1
            logger.error(f"❌ Destination sent no status line: {result.status_line!r}")
            return web.Response(status=502)

        status_code, reason = status

        headers = CIMultiDict()
        for name, value in iter_emitted_headers(result.response_headers):
            headers.add(name, value)

        self.stats['total_responses'] += 1
        logger.info(
            f"✅ {status_code} {reason} "
            f"({len(result.body)} bytes, type={result.content_type}, encoding={result.content_encoding})"
        )

        return web.Response(
            status=status_code,
            reason=reason or None,
            headers=headers,
            body=result.body
        )

    def get_full_stats(self):
        return dict(self.stats)


class RelayManager:
    def __init__(self, config: Optional[ConfigManager] = None, forwarder: Optional[Forwarder] = None):
        self.config = config or get_config()
        server_config = self.config.get_server_config()
        relay_config = self.config.get_relay_config()

        self.host = server_config.get('host', '127.0.0.1')
        self.port = int(server_config.get('port', 61080))
        self.use_tls = bool(server_config.get('tls', False))

        self.forwarder = forwarder or Forwarder(
            client=AiohttpClient(verify_ssl=relay_config.get('verify_ssl', True)),
            connect_timeout=relay_config.get('connect_timeout', DEFAULT_CONNECT_TIMEOUT)
        )
        self.handler = RelayHandler(
            forwarder=self.forwarder,
            endpoint_param=relay_config.get('endpoint_param', DEFAULT_ENDPOINT_PARAM),
            unknown_caller_ip=relay_config.get('unknown_caller_ip', 'Unknown')
        )

        self.is_running = False
        self.runner = None
        self.site = None

        # Error tracking: 'port', 'tls', 'server'
        self.last_error_type = None
        self.last_error_details = None

    def create_app(self) -> web.Application:
        app = web.Application()
        # Every method reaches the handler: anything but GET/POST gets 400
        app.router.add_route('*', '/{path:.*}', self.handler.handle_http)
        return app

    @property
    def url(self) -> str:
        scheme = 'https' if self.use_tls else 'http'
        return f"{scheme}://{self.host}:{self.port}"

    def _fail(self, error_type: str, details: str) -> bool:
        self.last_error_type = error_type
        self.last_error_details = details
        logger.error(f"❌ {details}")
        return False

    async def start(self) -> bool:
        """
        Start the relay server

        Returns:
            bool: True if started successfully
        """
        if self.is_running:
            logger.warning("⚠️ Relay is already running")
            return False

        port_available, port_message = check_port_availability(self.port, self.host)
        if not port_available:
            process_info = get_process_using_port(self.port)
            if process_info:
                logger.info(
                    f"📌 Process on port {self.port}:\n"
                    f"   PID: {process_info.get('pid')}\n"
                    f"   Name: {process_info.get('name')}\n"
                    f"   User: {process_info.get('username', 'N/A')}"
                )
            return self._fail('port', port_message)

        ssl_context = None
        if self.use_tls:
            from core.certificate_manager import CertificateManager

            certificate_manager = CertificateManager()
            if not certificate_manager.ensure_certificates_exist():
                return self._fail('tls', "Failed to create TLS certificates")
            ssl_context = certificate_manager.create_ssl_context()
            logger.info(
                f"🔐 Certificate valid for {certificate_manager.get_certificate_days_remaining()} more days"
            )

        try:
            self.runner = web.AppRunner(self.create_app(), access_log=None)
            await self.runner.setup()

            self.site = web.TCPSite(
                self.runner,
                host=self.host,
                port=self.port,
                ssl_context=ssl_context,
            )
            await self.site.start()

        except OSError as e:
            await self._cleanup()
            return self._fail('server', f"Failed to start relay server: {e}")

        self.is_running = True
        logger.info(f"✅ Relay server started on {self.url}")
        return True

    async def _cleanup(self):
        if self.site:
            await self.site.stop()
            self.site = None
        if self.runner:
            await self.runner.cleanup()
            self.runner = None

    async def stop(self):
        """Stop the relay server"""
        if not self.is_running:
            logger.warning("⚠️ Relay is not running")
            return

        logger.info("🛑 Stopping relay...")
        self.is_running = False
        await self._cleanup()

        stats = self.handler.get_full_stats()
        logger.info(
            f"📊 Session statistics:\n"
            f"   Total requests: {stats['total_requests']}\n"
            f"   Relayed responses: {stats['total_responses']}\n"
            f"   Invalid requests: {stats['invalid_requests']}\n"
            f"   Upstream errors: {stats['upstream_errors']}\n"
            f"   Internal errors: {stats['errors']}"
        )
        logger.info("✅ Relay stopped")

    def get_status(self):
        """Returns the relay status"""
        status = {
            'running': self.is_running,
            'url': self.url,
            'tls': self.use_tls,
            'stats': self.handler.get_full_stats()
        }

        if self.last_error_type:
            status['last_error'] = {
                'type': self.last_error_type,
                'details': self.last_error_details
            }

        return status

import logging
import ssl

import requests
from requests.adapters import HTTPAdapter
from requests.structures import CaseInsensitiveDict
from urllib3.exceptions import HTTPError as Urllib3HTTPError
from urllib3.exceptions import ReadTimeoutError as Urllib3ReadTimeoutError

from edgeroute.exceptions import OriginUnavailableError
from edgeroute.http import HOP_BY_HOP_HEADERS, EdgeRequest, EdgeResponse
from edgeroute.origins.base import Origin, OriginConfig, OriginKind, OriginRuntime, TlsVersion
from edgeroute.origins.decorators import register_origin

logger = logging.getLogger(__name__)

_SSL_VERSIONS: dict[TlsVersion, ssl.TLSVersion] = {
    "TLSv1": ssl.TLSVersion.TLSv1,
    "TLSv1.1": ssl.TLSVersion.TLSv1_1,
    "TLSv1.2": ssl.TLSVersion.TLSv1_2,
    "TLSv1.3": ssl.TLSVersion.TLSv1_3,
}


class TlsFloorAdapter(HTTPAdapter):
    """HTTPAdapter that refuses TLS handshakes below a minimum version."""

    def __init__(self, min_tls_version: TlsVersion, **kwargs) -> None:
        self.min_tls_version = min_tls_version
        super().__init__(**kwargs)

    def _ssl_context(self) -> ssl.SSLContext:
        context = ssl.create_default_context()
        context.minimum_version = _SSL_VERSIONS[self.min_tls_version]
        return context

    def init_poolmanager(self, *args, **kwargs) -> None:
        kwargs["ssl_context"] = self._ssl_context()
        super().init_poolmanager(*args, **kwargs)

    def proxy_manager_for(self, *args, **kwargs):
        kwargs["ssl_context"] = self._ssl_context()
        return super().proxy_manager_for(*args, **kwargs)


@register_origin(OriginKind.DYNAMIC)
class DynamicOrigin(Origin):
    """HTTP(S) origin, such as a function URL or an API endpoint.

    Requests are proxied as they are; the response comes back verbatim apart
    from hop-by-hop headers.
    """

    def __init__(self, config: OriginConfig, session: requests.Session | None = None) -> None:
        super().__init__(config)
        self._session = session or self._create_session(config)

    @classmethod
    def build(cls, config: OriginConfig, runtime: OriginRuntime) -> "DynamicOrigin":
        # The session carries the origin's TLS floor, so it is never shared.
        return cls(config, runtime.http_session)

    @staticmethod
    def _create_session(config: OriginConfig) -> requests.Session:
        session = requests.Session()
        session.trust_env = False
        session.mount("https://", TlsFloorAdapter(config.min_tls_version, max_retries=0))
        session.mount("http://", HTTPAdapter(max_retries=0))
        return session

    def url_for(self, request: EdgeRequest) -> str:
        scheme = self.scheme_for(request.scheme)
        url = f"{scheme}://{self.address}{self.config.origin_path}{request.path}"
        return f"{url}?{request.query}" if request.query else url

    def fetch(self, request: EdgeRequest) -> EdgeResponse:
        headers = {
            name: value
            for name, value in request.headers.items()
            if name.lower() not in HOP_BY_HOP_HEADERS
        }
        headers["Host"] = self.address
        url = self.url_for(request)
        logger.debug("Proxying %s %s to origin '%s'", request.method, url, self.id)

        try:
            response = self._session.request(
                request.method,
                url,
                headers=headers,
                data=request.body or None,
                timeout=self.timeout,
                allow_redirects=False,
                verify=True,
                stream=True,
            )
        except requests.Timeout as e:
            raise OriginUnavailableError(self.id, str(e), timeout=True) from e
        except requests.ConnectionError as e:
            raise OriginUnavailableError(self.id, str(e)) from e

        try:
            # Keep the body exactly as the origin encoded it.
            body = response.raw.read(decode_content=False)
        except Urllib3ReadTimeoutError as e:
            raise OriginUnavailableError(self.id, str(e), timeout=True) from e
        except (requests.RequestException, Urllib3HTTPError) as e:
            raise OriginUnavailableError(self.id, str(e)) from e
        finally:
            response.close()

        response_headers = CaseInsensitiveDict(
            {
                name: value
                for name, value in response.headers.items()
                if name.lower() not in HOP_BY_HOP_HEADERS
            }
        )
        return EdgeResponse(status=response.status_code, headers=response_headers, body=body)

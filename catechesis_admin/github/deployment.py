"""
Deployment — GitHub Pages build status and live-site verification.

Every commit to the site branch triggers a Pages build. These helpers
report the current build, wait for the build of a given commit, and
check that the published site actually serves the change.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional

import httpx

from ..errors import AppError
from .client import GitHubClient

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, str], None]

# Pages build statuses (GET /pages/builds/latest)
BUILD_DONE = "built"
BUILD_FAILED = "errored"


def _progress(callback: Optional[ProgressCallback], percent: float, message: str) -> None:
    if callback:
        callback(int(percent), message)


class DeploymentMonitor:
    """GitHub Pages status for the client's repository."""

    def __init__(
        self,
        client: GitHubClient,
        site_url: Optional[str] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        http: Optional[httpx.Client] = None,
    ):
        self.client = client
        self.site_url = site_url
        self._sleep = sleep
        self._clock = clock
        self._http = http

    def get_latest_deployment(self) -> Optional[Dict[str, Any]]:
        """Latest Pages build, or None when Pages never built."""
        response = self.client.request(
            "GET",
            f"/repos/{self.client.repository}/pages/builds/latest",
            allow_404=True,
        )
        if response.status_code == 404:
            return None
        build = response.json()
        return {
            "status": build.get("status"),
            "commit": build.get("commit"),
            "created_at": build.get("created_at"),
            "updated_at": build.get("updated_at"),
            "duration_ms": build.get("duration"),
            "error": (build.get("error") or {}).get("message"),
        }

    def check_deployment_status(self) -> Dict[str, Any]:
        """Pages configuration plus the latest build."""
        try:
            pages = self.client.request(
                "GET", f"/repos/{self.client.repository}/pages"
            ).json()
            latest = self.get_latest_deployment()
        except AppError as e:
            logger.warning(f"Could not read Pages status: {e.message}")
            return {
                "status": "unknown",
                "url": None,
                "source": None,
                "build_type": None,
                "last_deployment": None,
                "message": f"Erro ao verificar status do deploy: {e.message}",
            }

        status = pages.get("status") or "unknown"
        return {
            "status": status,
            "url": pages.get("html_url"),
            "source": pages.get("source"),
            "build_type": pages.get("build_type") or "legacy",
            "last_deployment": latest,
            "message": f"GitHub Pages está {status}",
        }

    def monitor_deployment(
        self,
        commit_sha: str,
        progress_callback: Optional[ProgressCallback] = None,
        max_wait: float = 300.0,
        poll_interval: float = 10.0,
    ) -> Dict[str, Any]:
        """
        Poll until the Pages build for ``commit_sha`` finishes.

        Builds are matched on the 7-character SHA prefix. Progress is
        reported as elapsed/max_wait, capped at 90% until the build is done.
        """
        start = self._clock()
        prefix = commit_sha[:7]
        _progress(progress_callback, 0, "Iniciando monitoramento do deploy...")

        while True:
            elapsed = self._clock() - start
            if elapsed >= max_wait:
                break

            try:
                deployment = self.get_latest_deployment()
            except AppError as e:
                _progress(progress_callback, 0, f"Erro no monitoramento: {e.message}")
                return {
                    "success": False,
                    "deployment": None,
                    "message": f"Erro no monitoramento: {e.message}",
                    "duration": elapsed,
                }

            percent = min(90.0, elapsed / max_wait * 100)
            if deployment and (deployment.get("commit") or "").startswith(prefix):
                if deployment["status"] == BUILD_DONE:
                    _progress(progress_callback, 100, "Deploy concluído com sucesso!")
                    return {
                        "success": True,
                        "deployment": deployment,
                        "message": "Deploy concluído com sucesso",
                        "duration": self._clock() - start,
                    }
                if deployment["status"] == BUILD_FAILED:
                    message = f"Deploy falhou: {deployment.get('error') or 'erro desconhecido'}"
                    _progress(progress_callback, 0, message)
                    return {
                        "success": False,
                        "deployment": deployment,
                        "message": message,
                        "duration": self._clock() - start,
                    }
                _progress(progress_callback, percent, f"Deploy em andamento... ({elapsed:.0f}s)")
            else:
                _progress(progress_callback, percent, f"Aguardando início do deploy... ({elapsed:.0f}s)")

            self._sleep(poll_interval)

        _progress(progress_callback, 0, "Timeout no monitoramento do deploy")
        return {
            "success": False,
            "deployment": None,
            "message": "Timeout no monitoramento do deploy",
            "duration": self._clock() - start,
        }

    def verify_deployment(
        self,
        expected_content: Optional[str] = None,
        test_path: str = "",
    ) -> Dict[str, Any]:
        """
        Fetch the live site and optionally look for ``expected_content``.

        Uses ``site_url`` when configured, otherwise the Pages URL.
        """
        base_url = self.site_url
        if not base_url:
            base_url = self.check_deployment_status().get("url")
        if not base_url:
            return {
                "verified": False,
                "message": "URL do GitHub Pages não disponível",
                "response_time": 0,
            }

        url = base_url.rstrip("/") + "/" + test_path.lstrip("/") if test_path else base_url
        http = self._http or httpx.Client(timeout=15.0, follow_redirects=True)
        start = time.monotonic()
        try:
            response = http.get(url, headers={"Cache-Control": "no-cache", "Pragma": "no-cache"})
        except httpx.HTTPError as e:
            return {
                "verified": False,
                "message": f"Erro ao acessar o site: {e}",
                "response_time": round((time.monotonic() - start) * 1000),
            }
        finally:
            if self._http is None:
                http.close()
        response_time = round((time.monotonic() - start) * 1000)

        if not response.is_success:
            return {
                "verified": False,
                "message": f"Site não acessível (HTTP {response.status_code})",
                "response_time": response_time,
            }

        if expected_content and expected_content not in response.text:
            return {
                "verified": False,
                "message": "Conteúdo esperado não encontrado no site",
                "response_time": response_time,
            }

        return {
            "verified": True,
            "message": "Site publicado e acessível",
            "url": url,
            "response_time": response_time,
        }

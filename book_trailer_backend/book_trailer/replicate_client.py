import time, httpx, asyncio, logging
from typing import Optional

from .errors import ImageGenerationError
from .settings import Settings

logger = logging.getLogger(__name__)

REPLICATE_API = "https://api.replicate.com/v1"


def _parse_selector(selector: str):
    # Returns a tuple (mode, data)
    # mode == "version": data={"version": <hash>}
    # mode == "model": data={"owner": <owner>, "name": <name>}
    if "/" in selector:
        # Could be owner/name or owner/name:versionAlias
        owner_name, _, _version_alias = selector.partition(":")
        if "/" in owner_name:
            owner, name = owner_name.split("/", 1)
            return "model", {"owner": owner, "name": name}
    # Fallback assume it's a version hash
    return "version", {"version": selector}


class ReplicateImageProvider:
    """Secondary image provider: one Replicate prediction per scene, polled to completion."""

    name = "replicate"

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._settings = settings
        self._transport = transport

    def _headers(self):
        token = self._settings.replicate_api_token
        if not token:
            raise RuntimeError("REPLICATE_API_TOKEN is not set; please configure your .env")
        return {"Authorization": f"Token {token}"}

    def _model_selector(self) -> str:
        # Prefer explicit version for stability; fall back to a public model alias (latest).
        return self._settings.replicate_model_version or "black-forest-labs/flux-schnell"

    async def __call__(self, prompt: str) -> str:
        logger.info(f"Starting Replicate image generation for prompt: {prompt[:100]}...")

        async with httpx.AsyncClient(timeout=30, transport=self._transport) as client:
            selector = self._model_selector()
            json_body = {
                "input": {
                    "prompt": prompt,
                    "aspect_ratio": "3:4",
                    "num_outputs": 1,
                }
            }
            mode, data = _parse_selector(selector)
            if mode == "version":
                json_body["version"] = data["version"]
                url = f"{REPLICATE_API}/predictions"
            else:
                url = f"{REPLICATE_API}/models/{data['owner']}/{data['name']}/predictions"

            async def _create(url_to_use: str, body: dict):
                return await client.post(
                    url_to_use,
                    headers={**self._headers(), "Content-Type": "application/json"},
                    json=body,
                )

            r = await _create(url, json_body)
            if r.status_code >= 400:
                logger.error(f"Replicate create failed {r.status_code}: {r.text}")
                # Model endpoint can 404 for aliased models; resolve the latest version instead.
                if mode == "model" and r.status_code == 404:
                    model_resp = await client.get(
                        f"{REPLICATE_API}/models/{data['owner']}/{data['name']}",
                        headers=self._headers(),
                    )
                    model_resp.raise_for_status()
                    version_id = (model_resp.json().get("latest_version") or {}).get("id")
                    if not version_id:
                        raise ImageGenerationError("Could not resolve latest version for model")
                    logger.info(f"Resolved latest version: {version_id}")
                    r = await _create(f"{REPLICATE_API}/predictions", {**json_body, "version": version_id})
                    if r.status_code >= 400:
                        raise ImageGenerationError(f"Replicate create failed {r.status_code}: {r.text}")
                else:
                    raise ImageGenerationError(f"Replicate create failed {r.status_code}: {r.text}")

            pred_id = r.json()["id"]
            logger.info(f"Replicate prediction created with ID: {pred_id}")

            start = time.monotonic()
            while True:
                s = await client.get(f"{REPLICATE_API}/predictions/{pred_id}", headers=self._headers())
                if s.status_code >= 400:
                    raise ImageGenerationError(f"Replicate status failed {s.status_code}: {s.text}")
                body = s.json()
                status = body.get("status")
                logger.debug(f"Replicate prediction {pred_id} status: {status}")

                if status in ("succeeded", "failed", "canceled"):
                    if status != "succeeded":
                        raise ImageGenerationError(
                            f"Replicate failed: {status}. logs={body.get('logs')} error={body.get('error')}"
                        )
                    output = body.get("output")
                    if isinstance(output, list) and output:
                        return output[0]
                    if isinstance(output, str) and output:
                        return output
                    raise ImageGenerationError("Replicate succeeded but no output URL")
                if time.monotonic() - start > self._settings.replicate_poll_timeout_s:
                    raise ImageGenerationError("Replicate polling timeout")
                await asyncio.sleep(self._settings.replicate_poll_interval_ms / 1000.0)

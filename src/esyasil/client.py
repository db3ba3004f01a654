from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Sequence, Union

import httpx

from . import codec
from .errors import ApiError
from .models.api_models import ProcessImagesResponse
from .models.outcome import ImageOutcome

DEFAULT_TIMEOUT = 180.0


class ProcessingClient:
    """Synchronous client for `POST /processImages`."""

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._http = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
            headers={"Authorization": f"Bearer {token}"},
        )

    def __enter__(self) -> "ProcessingClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self._http.close()

    def process_images(self, images: Sequence[str]) -> List[ImageOutcome]:
        response = self._http.post("/processImages", json={"images": list(images)})
        if response.status_code != 200:
            raise ApiError(response.status_code, _error_message(response))
        return ProcessImagesResponse.model_validate(response.json()).results

    def process_files(self, paths: Sequence[Union[str, Path]]) -> List[ImageOutcome]:
        return self.process_images([codec.encode_file(p) for p in paths])


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict) and "detail" in body:
        return str(body["detail"])
    return response.text

"""Async HTTP client for the relay, mirroring what the browser does."""

import io
import zipfile
from pathlib import Path
from typing import Callable, Iterable, Optional, Union
from urllib.parse import quote

import httpx

from conformer_web.client.state import PipelineView
from conformer_web.client.stream import EventStreamDecoder
from conformer_web.jobs.events import StreamEvent

UpdateCallback = Callable[[StreamEvent], None]


class PipelineClient:
    """Submits jobs, consumes the event stream and downloads artifacts.

    Usage:
        async with PipelineClient("http://localhost:8001") as client:
            view = await client.run_pipeline({"smiles": "CCO", ...})
            await client.download_archive(view.conformers.xyz_files, "out.zip")
    """

    def __init__(self, base_url: str, http: Optional[httpx.AsyncClient] = None):
        self._http = http or httpx.AsyncClient(base_url=base_url, timeout=None)
        self._owns_http = http is None

    async def __aenter__(self) -> "PipelineClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def run_pipeline(
        self,
        form: dict,
        ref_file: Optional[Union[str, Path]] = None,
        on_update: Optional[UpdateCallback] = None,
    ) -> PipelineView:
        """Submit a job and follow its stream until the terminal event."""
        data = {key: _form_value(value) for key, value in form.items()}
        files = None
        if ref_file is not None:
            ref_path = Path(ref_file)
            files = {"refConfoFile": (ref_path.name, ref_path.read_bytes(), "application/octet-stream")}

        view = PipelineView()
        view.start()
        decoder = EventStreamDecoder()
        async with self._http.stream(
            "POST",
            "/api/run-pipeline",
            data=data,
            files=files,
            headers={"Accept": "text/event-stream"},
        ) as response:
            if response.status_code != 200:
                await response.aread()
                response.raise_for_status()
            view.job_id = response.headers.get("X-Job-Id")
            async for chunk in response.aiter_bytes():
                for event in decoder.feed(chunk):
                    view.apply(event)
                    if on_update is not None:
                        on_update(event)
        for event in decoder.close():
            view.apply(event)
            if on_update is not None:
                on_update(event)
        return view

    async def download_file(self, path: str) -> bytes:
        response = await self._http.get(f"/api/files/{quote(path, safe='')}")
        response.raise_for_status()
        return response.content

    async def download_archive(self, paths: Iterable[str], destination: Union[str, Path]) -> Path:
        """Fetch several artifacts and bundle them into one zip file."""
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for path in paths:
                archive.writestr(path.rsplit("/", 1)[-1], await self.download_file(path))
        destination = Path(destination)
        destination.write_bytes(buffer.getvalue())
        return destination


def _form_value(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)

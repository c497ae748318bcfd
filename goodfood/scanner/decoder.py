"""Barcode decoding and the frame sampling loop."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Protocol

logger = logging.getLogger(__name__)

DEFAULT_FORMATS = ["EAN13", "EAN8", "UPCA", "UPCE", "CODE128", "CODE39", "QRCODE"]


class FrameProvider(Protocol):
    def current_frame(self) -> Any | None: ...


class BarcodeDecoder:
    """Multi-format symbol decoder backed by pyzbar.

    With ``try_harder`` enabled, frames that yield nothing on the plain
    grayscale pass are retried after histogram equalization and after a 2x
    upscale, which helps with low-contrast and small barcodes.
    """

    def __init__(self, formats: list[str] | None = None, try_harder: bool = True) -> None:
        try:
            from pyzbar.pyzbar import ZBarSymbol
        except ImportError:
            raise ImportError("pyzbar is required: pip install pyzbar") from None

        names = formats or DEFAULT_FORMATS
        unknown = [n for n in names if not hasattr(ZBarSymbol, n)]
        if unknown:
            raise ValueError(f"unsupported barcode formats: {', '.join(unknown)}")
        self._symbols = [getattr(ZBarSymbol, n) for n in names]
        self._try_harder = try_harder

    def decode(self, frame: Any) -> str | None:
        """Return the payload of the first symbol found in ``frame``, or None."""
        import cv2
        from pyzbar.pyzbar import decode

        gray = frame
        if getattr(frame, "ndim", 2) == 3:
            gray = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)

        variants = [gray]
        if self._try_harder:
            variants.append(cv2.equalizeHist(gray))
            variants.append(
                cv2.resize(gray, None, fx=2.0, fy=2.0, interpolation=cv2.INTER_LINEAR)
            )

        for image in variants:
            for symbol in decode(image, symbols=self._symbols):
                text = symbol.data.decode("utf-8", errors="replace").strip()
                if text:
                    return text
        return None

    __call__ = decode


class DecoderLoop:
    """Self-rescheduling sampler that reports the first decoded symbol.

    The loop is one-shot: once it has returned a code or been stopped it
    takes no further samples. ``stop()`` does not interrupt a decode already
    in progress; its result is discarded instead.
    """

    def __init__(
        self,
        source: FrameProvider,
        decoder: Callable[[Any], str | None],
        interval: float = 0.15,
    ) -> None:
        self._source = source
        self._decoder = decoder
        self._interval = interval
        self._scanning = False
        self._stopped = False
        self.samples = 0

    @property
    def scanning(self) -> bool:
        return self._scanning and not self._stopped

    def stop(self) -> None:
        self._stopped = True
        self._scanning = False

    async def run(self) -> str | None:
        """Sample until a symbol is decoded or the loop is stopped.

        Raises:
            StreamError: the underlying stream failed.
        """
        if self._stopped:
            return None
        self._scanning = True
        try:
            while self.scanning:
                frame = await asyncio.to_thread(self._source.current_frame)
                if frame is not None and self.scanning:
                    self.samples += 1
                    code = await self._try_decode(frame)
                    if code and self.scanning:
                        self._scanning = False
                        logger.info("decoded %s after %d samples", code, self.samples)
                        return code
                if not self.scanning:
                    break
                await asyncio.sleep(self._interval)
            return None
        finally:
            self._scanning = False

    async def _try_decode(self, frame: Any) -> str | None:
        try:
            return await asyncio.to_thread(self._decoder, frame)
        except Exception:
            logger.debug("decode attempt %d failed", self.samples, exc_info=True)
            return None

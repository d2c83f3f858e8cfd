"""FastAPI service running one monitoring session.

An upstream extractor POSTs batches of intensity samples to `/ingest`;
each sample goes through the pipeline in order and the latest per-tick
result is exposed on `/metrics` and pushed to WebSocket clients.
"""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field

from .config import PipelineConfig
from .errors import CalibrationError
from .feedback import Consistency, FeedbackRecord
from .pipeline import VitalSignsPipeline

logger = logging.getLogger(__name__)


class IngestModel(BaseModel):
    t0: float = Field(..., description="timestamp of the first value (ms)")
    dt: float = Field(..., gt=0.0, description="sample spacing (ms)")
    values: list[float]
    quality: Optional[float] = Field(None, ge=0.0, le=100.0)
    finger_detected: Optional[bool] = None


class CalibrationModel(BaseModel):
    systolic: float
    diastolic: float


class FeedbackModel(BaseModel):
    spo2: Consistency = Consistency.MEDIUM
    blood_pressure: Consistency = Consistency.MEDIUM
    heart_rate: Consistency = Consistency.MEDIUM
    signal_quality: float = Field(50.0, ge=0.0, le=100.0)


def make_app(cfg: PipelineConfig | None = None) -> FastAPI:
    pipeline = VitalSignsPipeline(cfg)
    lock = asyncio.Lock()
    ws_clients: set[WebSocket] = set()
    metrics: dict = {"status": "init"}

    async def broadcast_loop() -> None:
        while True:
            try:
                await asyncio.sleep(0.2)
                if not ws_clients:
                    continue
                async with lock:
                    msg = json.dumps(metrics)
                dead: list[WebSocket] = []
                for w in ws_clients:
                    try:
                        await w.send_text(msg)
                    except Exception:
                        dead.append(w)
                for w in dead:
                    ws_clients.discard(w)
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("metrics broadcast failed")
                await asyncio.sleep(0.5)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:  # pragma: no cover - integration
        task = asyncio.create_task(broadcast_loop())
        try:
            yield
        finally:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            pipeline.close()

    app = FastAPI(title="PPG Vitals Service", version="0.1.0", lifespan=lifespan)
    app.state.pipeline = pipeline

    @app.get("/health")
    async def health() -> dict[str, str]:  # pragma: no cover - trivial
        return {"status": "ok"}

    @app.get("/metrics")
    async def get_metrics() -> dict:
        async with lock:
            return dict(metrics)

    @app.post("/ingest")
    async def post_ingest(payload: IngestModel) -> dict:
        if not payload.values:
            return {"status": "empty"}
        async with lock:
            t = payload.t0
            result = None
            for v in payload.values:
                result = pipeline.process(v, t, payload.quality, payload.finger_detected)
                t += payload.dt
            if result is not None:
                metrics.clear()
                metrics.update(result.to_dict())
                metrics["status"] = "ok"
        return {"status": "ok", "count": len(payload.values)}

    @app.post("/calibration")
    async def post_calibration(ref: CalibrationModel) -> dict:
        async with lock:
            try:
                sys_f, dia_f = pipeline.update_calibration(ref.systolic, ref.diastolic)
            except CalibrationError as e:
                raise HTTPException(status_code=400, detail=str(e)) from e
        return {"status": "ok", "systolic_factor": sys_f, "diastolic_factor": dia_f}

    @app.post("/feedback")
    async def post_feedback(fb: FeedbackModel) -> dict:
        async with lock:
            pipeline.provide_feedback(FeedbackRecord(**fb.model_dump()))
            return {"status": "ok", "feedback": pipeline.feedback.snapshot()}

    @app.post("/reset")
    async def post_reset() -> dict:
        async with lock:
            pipeline.reset()
            metrics.clear()
            metrics["status"] = "init"
        return {"status": "ok"}

    @app.websocket("/ws")
    async def ws_metrics(ws: WebSocket) -> None:  # pragma: no cover - integration
        await ws.accept()
        ws_clients.add(ws)
        try:
            while True:
                # keep alive; updates are pushed from the broadcast loop
                await ws.receive_text()
        except WebSocketDisconnect:
            ws_clients.discard(ws)

    return app


def main(host: str = "127.0.0.1", port: int = 8000) -> None:  # pragma: no cover - manual run helper
    import uvicorn

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    uvicorn.run(make_app(), host=host, port=port)


if __name__ == "__main__":  # pragma: no cover
    main()

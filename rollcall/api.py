"""FastAPI application exposing the rollcall check-in API."""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Response, status
from pydantic import BaseModel

from .config import Settings, load_settings
from .db import Database
from .errors import PersistenceError
from .feedback import (
    COMMITTED,
    CONTEXT_REQUIRED,
    DUPLICATE,
    MALFORMED,
    NOT_FOUND,
    PERSISTENCE_ERROR,
    SUPPRESSED,
    CheckInOutcome,
)
from .models import Person
from .service import CheckInService
from .webhook import WebhookNotifier

OUTCOME_STATUS = {
    COMMITTED: status.HTTP_201_CREATED,
    SUPPRESSED: status.HTTP_200_OK,
    DUPLICATE: status.HTTP_409_CONFLICT,
    NOT_FOUND: status.HTTP_404_NOT_FOUND,
    MALFORMED: status.HTTP_400_BAD_REQUEST,
    CONTEXT_REQUIRED: 422,
    PERSISTENCE_ERROR: status.HTTP_503_SERVICE_UNAVAILABLE,
}


class ManualCheckIn(BaseModel):
    person_id: str
    note: Optional[str] = None


class ScanIn(BaseModel):
    payload: str


class ContextSelection(BaseModel):
    session_id: Optional[str] = None
    event_id: Optional[str] = None


def person_to_dict(person: Person) -> Dict[str, Any]:
    return {
        "id": person.id,
        "full_name": person.full_name,
        "national_id": person.national_id,
        "badge_number": person.badge_number,
        "role": person.role,
    }


def create_app(settings: Optional[Settings] = None, service: Optional[CheckInService] = None) -> FastAPI:
    settings = settings or load_settings()
    if service is None:
        database = Database(settings.database_path)
        service = CheckInService(settings, database)
    webhook = (
        WebhookNotifier(settings.webhook_url, station_id=settings.station_id)
        if settings.webhook_url
        else None
    )

    async def verify_api_key(x_api_key: str = Header(..., alias="X-API-Key")) -> None:
        if x_api_key != settings.api_key:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid api key")

    def get_service() -> CheckInService:
        return service

    def outcome_response(outcome: CheckInOutcome, response: Response) -> Dict[str, Any]:
        response.status_code = OUTCOME_STATUS[outcome.kind]
        return outcome.to_dict()

    app = FastAPI(title="Rollcall API", version="1.0.0")

    @app.on_event("startup")
    async def startup_event() -> None:
        if webhook is not None:
            service.notifier.subscribe(webhook)
        await service.context.load_today()
        await service.load_roster()

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        service.stop_scanner()
        if webhook is not None:
            await webhook.close()

    @app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/people/search")
    async def search_people(
        q: str,
        _: None = Depends(verify_api_key),
        svc: CheckInService = Depends(get_service),
    ) -> dict[str, object]:
        try:
            people = await svc.search_people(q)
        except PersistenceError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return {"term": q, "people": [person_to_dict(p) for p in people]}

    @app.get("/api/context/today")
    async def get_today_context(
        _: None = Depends(verify_api_key),
        svc: CheckInService = Depends(get_service),
    ) -> dict[str, object]:
        try:
            options = await svc.context.load_today()
        except PersistenceError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        fixed = svc.context.fixed
        session = svc.context.selected_session
        event = svc.context.selected_event
        return {
            "date": options.day.isoformat(),
            "fixed": None if fixed.is_none else {"kind": fixed.kind, "id": fixed.ref_id},
            "sessions": [
                {
                    "id": s.id,
                    "class_id": s.class_id,
                    "class_name": s.class_name,
                    "subject_name": s.subject_name,
                    "subject_code": s.subject_code,
                    "professor_name": s.professor_name,
                }
                for s in options.sessions
            ],
            "events": [
                {"id": e.id, "title": e.title, "description": e.description} for e in options.events
            ],
            "selected_session_id": session.id if session else None,
            "selected_event_id": event.id if event else None,
        }

    @app.put("/api/context/selection")
    async def select_context(
        selection: ContextSelection,
        _: None = Depends(verify_api_key),
        svc: CheckInService = Depends(get_service),
    ) -> dict[str, object]:
        if not svc.context.fixed.is_none:
            raise HTTPException(status_code=400, detail="context is fixed for this station")
        if bool(selection.session_id) == bool(selection.event_id):
            raise HTTPException(status_code=400, detail="choose exactly one of session_id or event_id")
        try:
            if selection.session_id:
                session = await svc.context.select_session(selection.session_id)
                return {"kind": "class_session", "id": session.id, "label": session.subject_name}
            event = await svc.context.select_event(selection.event_id or "")
            return {"kind": "event", "id": event.id, "label": event.title}
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc.args[0])) from exc
        except PersistenceError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc

    @app.delete("/api/context/selection", status_code=status.HTTP_204_NO_CONTENT)
    async def clear_context(
        _: None = Depends(verify_api_key),
        svc: CheckInService = Depends(get_service),
    ) -> Response:
        svc.context.clear_selection()
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.post("/api/checkins")
    async def manual_checkin(
        body: ManualCheckIn,
        response: Response,
        _: None = Depends(verify_api_key),
        svc: CheckInService = Depends(get_service),
    ) -> dict[str, object]:
        outcome = await svc.check_in_manual(body.person_id, note=body.note)
        return outcome_response(outcome, response)

    @app.post("/api/scans/resolve")
    async def resolve_scan(
        body: ScanIn,
        response: Response,
        _: None = Depends(verify_api_key),
        svc: CheckInService = Depends(get_service),
    ) -> dict[str, object]:
        """Run a payload already debounced by the reader straight through the pipeline."""
        outcome = await svc.resolve_scan(body.payload)
        return outcome_response(outcome, response)

    @app.post("/api/scans", status_code=status.HTTP_202_ACCEPTED)
    async def push_scan(
        body: ScanIn,
        _: None = Depends(verify_api_key),
        svc: CheckInService = Depends(get_service),
    ) -> dict[str, object]:
        try:
            svc.push_scan(body.payload)
        except RuntimeError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return {"queued": True}

    @app.get("/api/scanner")
    async def scanner_status(
        _: None = Depends(verify_api_key),
        svc: CheckInService = Depends(get_service),
    ) -> dict[str, object]:
        stats = svc.stats
        return {
            "running": svc.scanner_running,
            "acknowledged": stats.acknowledged,
            "processed": stats.processed,
            "last_payload": stats.last_payload,
            "last_processed_at": stats.last_processed_at.isoformat() if stats.last_processed_at else None,
            "suppressed_codes": len(svc.suppression),
        }

    @app.post("/api/scanner/start")
    async def start_scanner(
        _: None = Depends(verify_api_key),
        svc: CheckInService = Depends(get_service),
    ) -> dict[str, object]:
        svc.start_scanner()
        return {"running": svc.scanner_running}

    @app.post("/api/scanner/stop")
    async def stop_scanner(
        _: None = Depends(verify_api_key),
        svc: CheckInService = Depends(get_service),
    ) -> dict[str, object]:
        svc.stop_scanner()
        return {"running": False}

    @app.delete("/api/scanner/history")
    async def clear_history(
        _: None = Depends(verify_api_key),
        svc: CheckInService = Depends(get_service),
    ) -> dict[str, object]:
        return {"cleared": svc.clear_scan_history()}

    @app.get("/api/roster")
    async def get_roster(
        _: None = Depends(verify_api_key),
        svc: CheckInService = Depends(get_service),
    ) -> dict[str, object]:
        return {
            "stats": svc.roster_stats(),
            "records": [record.to_dict() for record in svc.roster.records],
        }

    @app.get("/api/outcomes")
    async def get_outcomes(
        _: None = Depends(verify_api_key),
        svc: CheckInService = Depends(get_service),
    ) -> dict[str, object]:
        return {"outcomes": [outcome.to_dict() for outcome in svc.notifier.history]}

    app.state.service = service
    return app


__all__ = ["create_app"]

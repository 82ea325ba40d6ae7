# wsm/server.py
"""
FastAPI server for the wsm CLI.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from starlette.responses import JSONResponse

from wsm.analysis.results import ResultsAggregator
from wsm.analysis.status import render_status
from wsm.errors import CampaignActive, InvalidTransition
from wsm.sampling.coordinator import SurveyCoordinator
from wsm.sources.labels import PendingLabelResolver
from wsm.utils.log import get_logger
from wsm.utils.validate import LabelAnswer, LocationSummary, RenameRequest, Status

logger = get_logger(__name__)


def create_app(survey: str, coordinator: SurveyCoordinator) -> FastAPI:
    """
    Build a FastAPI instance bound to a survey and its coordinator.

    The coordinator's loops start and stop with the application lifespan.
    If its resolver is a PendingLabelResolver, label requests are answered
    through /api/labels.
    """
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await coordinator.start()
        logger.info("Survey %s running", survey)
        try:
            yield
        finally:
            if isinstance(coordinator.resolver, PendingLabelResolver):
                coordinator.resolver.cancel_all()
            await coordinator.shutdown()

    app = FastAPI(title="Wi-Fi Signal Mapper", lifespan=lifespan)
    app.state.survey = survey
    app.state.coordinator = coordinator

    def _coordinator(request: Request) -> SurveyCoordinator:
        return request.app.state.coordinator

    @app.get("/api/survey", response_class=JSONResponse)
    async def get_survey(request: Request) -> JSONResponse:
        return JSONResponse(status_code=200, content={"survey": request.app.state.survey})

    @app.get("/api/status")
    async def get_status(request: Request) -> dict:
        status: Status = _coordinator(request).status
        return {"status": status.model_dump(), "text": render_status(status)}

    @app.post("/api/campaign", status_code=202)
    async def start_campaign(request: Request) -> dict:
        coord = _coordinator(request)
        try:
            campaign = await coord.start_campaign()
        except CampaignActive as err:
            raise HTTPException(status_code=409, detail=str(err))
        except InvalidTransition as err:
            raise HTTPException(status_code=503, detail=str(err))
        return {"state": campaign.state.value, "target": campaign.target}

    @app.delete("/api/campaign")
    async def stop_campaign(request: Request) -> dict:
        result = await _coordinator(request).stop_campaign()
        if result is None:
            raise HTTPException(status_code=404, detail="no campaign has run")
        return {
            "state": result.state.value,
            "reason": result.reason.value if result.reason else None,
            "rounds_completed": result.rounds_completed,
        }

    @app.get("/api/labels")
    async def pending_labels(request: Request) -> dict:
        resolver = _coordinator(request).resolver
        pending = resolver.pending if isinstance(resolver, PendingLabelResolver) else []
        return {"pending": pending}

    @app.post("/api/labels")
    async def answer_label(request: Request, answer: LabelAnswer) -> dict:
        resolver = _coordinator(request).resolver
        if not isinstance(resolver, PendingLabelResolver):
            raise HTTPException(status_code=400, detail="labels are not answered over HTTP")
        if not resolver.answer(answer.location_key, answer.label):
            raise HTTPException(status_code=404, detail=f"no pending request for {answer.location_key}")
        return {"message": "label accepted"}

    @app.post("/api/permissions")
    async def grant_permissions(request: Request) -> dict:
        _coordinator(request).grant_permissions()
        return {"message": "permissions re-evaluated"}

    @app.get("/api/results", response_model=list[LocationSummary])
    async def get_results(request: Request):
        return ResultsAggregator(_coordinator(request).dao).summarize()

    @app.post("/api/rename")
    async def rename_access_point(request: Request, body: RenameRequest) -> dict:
        rows = _coordinator(request).dao.rename_access_point(
            body.access_point_id, body.display_name, body.location_key
        )
        return {"updated": rows}

    @app.delete("/api/reset")
    async def reset_all(request: Request) -> dict:
        _coordinator(request).dao.clear_all()
        return {"message": "all data cleared"}

    return app

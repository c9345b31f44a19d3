import os
import time
from typing import Dict, Any, Optional
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger
from langgraph.graph import StateGraph, START, END
from dotenv import load_dotenv

# Load environment variables before the clients read them
load_dotenv()

# Import our modules
from graph.outcome import Ok, SoftFail, Invalid
from graph.state import LeadState
from graph.nodes.normalize import normalize, clean_text
from graph.nodes.classify import classify
from graph.nodes.score import score
from graph.nodes.resolve import resolve
from graph.nodes.map_fields import map_fields
from graph.nodes.sync import sync
from graph.nodes.notify import notify
from tools import field_catalog, ghl, resend
from tools.errors import EmailDeliveryFailure

VERSION = "1.0.0"

# Configure logging
os.makedirs("logs", exist_ok=True)
logger.add("logs/app.log", rotation="1 day", retention="7 days", level="INFO")

# Initialize FastAPI app
app = FastAPI(
    title="Lead Intake & CRM Sync",
    description="Scores website form leads and syncs them to GoHighLevel with an email fallback",
    version=VERSION
)


# Build the LangGraph workflow
def build_workflow():
    """Build the lead intake workflow."""
    workflow = StateGraph(LeadState)

    # Add nodes
    workflow.add_node("normalize", normalize)
    workflow.add_node("classify", classify)
    workflow.add_node("score", score)
    workflow.add_node("resolve", resolve)
    workflow.add_node("map_fields", map_fields)
    workflow.add_node("sync", sync)
    workflow.add_node("notify", notify)

    workflow.add_edge(START, "normalize")

    # Rejected submissions never reach a remote service
    def validation_decision(state: LeadState) -> str:
        if isinstance(state.get("outcome"), Invalid):
            return "rejected"
        return "classify"

    workflow.add_conditional_edges(
        "normalize",
        validation_decision,
        {"rejected": END, "classify": "classify"}
    )
    workflow.add_edge("classify", "score")

    def crm_decision(state: LeadState) -> str:
        if ghl.ghl_client.is_configured():
            return "resolve"
        logger.info("GHL not configured, skipping field resolution")
        return "sync"

    workflow.add_conditional_edges(
        "score",
        crm_decision,
        {"resolve": "resolve", "sync": "sync"}
    )

    workflow.add_edge("resolve", "map_fields")
    workflow.add_edge("map_fields", "sync")
    workflow.add_edge("sync", "notify")
    workflow.add_edge("notify", END)

    return workflow.compile()


app_graph = build_workflow()


def build_response(result: Dict[str, Any]) -> JSONResponse:
    """Turn the workflow's outcome into the HTTP reply."""
    outcome = result.get("outcome")

    if isinstance(outcome, Invalid):
        return JSONResponse(
            status_code=outcome.status_code,
            content={"success": False, "message": outcome.reason}
        )

    content = {
        "success": True,
        "formType": result.get("form_type"),
        "leadScore": result.get("lead_score"),
        "leadQuality": result.get("lead_quality"),
    }
    if isinstance(outcome, Ok):
        content["message"] = "Lead received and synced to CRM"
        if outcome.remote_contact_id:
            content["remoteContactId"] = outcome.remote_contact_id
        return JSONResponse(status_code=outcome.status_code, content=content)

    # SoftFail: the lead was still accepted and emailed
    content["message"] = "Lead received"
    status_code = outcome.status_code if isinstance(outcome, SoftFail) else 200
    return JSONResponse(status_code=status_code, content=content)


async def read_json_object(req: Request) -> Optional[Dict[str, Any]]:
    try:
        payload = await req.json()
    except ValueError:
        return None
    return payload if isinstance(payload, dict) else None


@app.post("/api/leads")
async def create_lead(req: Request, mappingVersion: Optional[str] = None):
    """
    Lead intake endpoint for the assessment and get started forms.

    Expected payload (loose, both form shapes are accepted):
    {
        "firstName": "Jane",
        "lastName": "Doe",
        "email": "jane@example.com",
        "businessType": "agency",
        "contentGoals": ["newsletters", "blogs"],
        "selectedPlan": "complete-system"
    }
    """
    start_time = time.time()

    payload = await read_json_object(req)
    if payload is None:
        logger.warning("Rejected lead submission: body is not a JSON object")
        return JSONResponse(
            status_code=400,
            content={"success": False, "message": "Request body must be a JSON object"}
        )

    logger.info(f"Received lead submission: {payload.get('email', 'unknown')}")

    initial_state = {
        "raw": payload,
        "mapping_version": mappingVersion or "",
        "errors": [],
        "notifications": [],
    }

    result = await app_graph.ainvoke(initial_state)

    processing_time = time.time() - start_time
    if result.get("errors"):
        logger.warning(f"Lead processed with degraded steps: {result['errors']}")
    logger.info(f"Lead processing completed in {processing_time:.2f}s: "
                f"{result.get('record', {}).get('email', 'unknown')}")

    return build_response(result)


@app.post("/api/leads/partial")
async def create_partial_lead(req: Request):
    """Notify sales about a visitor who left contact details but has not finished the form."""
    payload = await read_json_object(req)
    if payload is None:
        return JSONResponse(
            status_code=400,
            content={"success": False, "message": "Request body must be a JSON object"}
        )

    contact = {field: clean_text(payload.get(field))
               for field in ("firstName", "lastName", "email", "phone", "timestamp")}
    if not contact["email"] or not contact["phone"]:
        return JSONResponse(
            status_code=400,
            content={"success": False, "message": "Email and phone are required"}
        )

    logger.info(f"Partial lead captured: {contact['email']}")
    try:
        await resend.email_notifier.send_partial_lead_notification(contact)
    except EmailDeliveryFailure as e:
        logger.error(f"Partial lead email failed: {e}")

    return {"success": True, "message": "Partial lead notification processed"}


@app.get("/health")
def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": time.time(),
        "version": VERSION,
        "services": {
            "redis": "connected" if field_catalog.field_resolver.cache.r else "disconnected",
            "ghl": "configured" if ghl.ghl_client.is_configured() else "not_configured",
            "email": "configured" if resend.email_notifier.is_configured() else "not_configured",
            "workflow": "ready"
        }
    }


# Error handlers
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={"success": False, "message": "Internal server error"}
    )


if __name__ == "__main__":
    import uvicorn

    logger.info("Starting Lead Intake & CRM Sync")

    uvicorn.run(
        "app:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )

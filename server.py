import os
import time
from typing import Any, Dict, List, Optional

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from quality_agent import __version__
from quality_agent.agents.main_agent import DataQualityPipeline
from quality_agent.config import ConnectionDescriptor, PipelineConfig
from quality_agent.errors import ContextError, DiscoveryError, GenerationError, PipelineError, RunCancelled
from quality_agent.utils.serialization import to_jsonable

load_dotenv()

app = FastAPI(title="Data Quality Agent", version=__version__)

# Shared pipeline
_pipeline_instance = None
_started_at = time.time()


def get_pipeline() -> DataQualityPipeline:
    global _pipeline_instance
    if _pipeline_instance is None:
        _pipeline_instance = DataQualityPipeline(PipelineConfig.from_env())
    return _pipeline_instance


# Request Models
class ConnectionModel(BaseModel):
    db_type: str = "postgresql"
    database: str
    host: Optional[str] = None
    port: Optional[int] = None
    user: Optional[str] = None
    password: Optional[str] = None
    schema_name: Optional[str] = Field(default=None, alias="schema")

    model_config = {"populate_by_name": True}

    def to_descriptor(self) -> ConnectionDescriptor:
        return ConnectionDescriptor(
            db_type=self.db_type.lower(),
            database=self.database,
            host=self.host,
            port=self.port,
            user=self.user,
            password=self.password,
            schema=self.schema_name,
        )


class DiscoverRequest(BaseModel):
    connection: ConnectionModel


class ContextRequest(BaseModel):
    connection: ConnectionModel
    focus_table: str
    business_context: Optional[str] = None


class RunRequest(BaseModel):
    connection: ConnectionModel
    focus_table: str
    business_context: Optional[str] = None
    credential: Optional[str] = None
    include_sql: bool = False


# Response Models
class StatusResponse(BaseModel):
    status: str
    version: str
    uptime_seconds: float
    supported_databases: List[str]


def _raise_http(e: Exception):
    """Map pipeline failures onto HTTP status codes"""
    if isinstance(e, ContextError):
        raise HTTPException(status_code=404, detail=str(e))
    if isinstance(e, (DiscoveryError, GenerationError)):
        raise HTTPException(status_code=502, detail={'message': str(e), 'reason': e.reason})
    if isinstance(e, RunCancelled):
        raise HTTPException(status_code=409, detail={'message': str(e), 'stage': e.stage})
    raise HTTPException(status_code=500, detail=str(e))


@app.get("/status", response_model=StatusResponse)
def status():
    from quality_agent.database import DatabaseFactory
    return StatusResponse(
        status="ok",
        version=__version__,
        uptime_seconds=round(time.time() - _started_at, 1),
        supported_databases=DatabaseFactory.get_supported_types(),
    )


@app.post("/discover")
def discover(req: DiscoverRequest) -> Dict[str, Any]:
    """Schema model and discovery metrics"""
    try:
        schema = get_pipeline().discover(req.connection.to_descriptor())
    except PipelineError as e:
        _raise_http(e)
    return to_jsonable(schema)


@app.post("/context")
def context(req: ContextRequest) -> Dict[str, Any]:
    """Analysis context around a focus table"""
    try:
        _, ctx = get_pipeline().collect_context(req.connection.to_descriptor(), req.focus_table,
                                                req.business_context)
    except PipelineError as e:
        _raise_http(e)
    return {
        'focus_table': ctx.focus_table.full_name,
        'complexity_score': ctx.complexity_score,
        'complexity_level': ctx.complexity_level,
        'total_sample_rows': ctx.total_sample_rows,
        'related_tables': [{
            'table_name': related.table_name,
            'importance_score': related.importance_score,
            'relation_type': related.relation_type.value,
            'hops': related.hops,
            'join_condition': related.join_condition,
        } for related in ctx.related_tables],
        'samples': [{'table_name': s.table_name, 'strategy': s.strategy, 'rows': len(s.rows)}
                    for s in ctx.samples],
    }


@app.post("/run")
def run_pipeline(req: RunRequest) -> Dict[str, Any]:
    """Run the full validation pipeline"""
    try:
        result = get_pipeline().run_pipeline(
            req.connection.to_descriptor(),
            req.focus_table,
            business_context=req.business_context,
            credential=req.credential,
            include_sql=req.include_sql,
        )
    except PipelineError as e:
        _raise_http(e)
    return result.to_dict()


def run():
    """Run the API server"""
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", 8080)))


if __name__ == "__main__":
    run()

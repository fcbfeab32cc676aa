from fastapi import FastAPI, Header
from pydantic import BaseModel
from typing import Annotated, Optional
from models import EvalResult, ApiOk
import logging, os, posixpath

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger("calc.render")

app = FastAPI(title="render-svc")
# values this close to an integer print as that integer
INT_EPSILON = float(os.getenv("CALC_INT_EPSILON", "1e-12"))

@app.get("/healthz")
def healthz():
    return {"ok": True}

def format_value(value: float, int_epsilon: float = INT_EPSILON) -> str:
    nearest = round(value)
    if abs(value - nearest) < int_epsilon or value == nearest:
        return str(int(nearest))  # never "-0"
    return "%.15g" % value

def format_result(result: EvalResult, int_epsilon: float = INT_EPSILON) -> str:
    if result.error is not None:
        return f"ERROR:{result.error.position}"
    return format_value(result.value, int_epsilon)

def output_name(filename: str) -> str:
    """`dir/expr.txt` -> `expr_result.txt`"""
    base = posixpath.basename(filename.replace("\\", "/"))
    stem = base.rsplit(".", 1)[0] if "." in base.lstrip(".") else base
    return f"{stem or 'expression'}_result.txt"

class RenderReq(BaseModel):
    result: EvalResult

@app.post("/render")
def render_api(req: RenderReq, x_request_id: Annotated[Optional[str], Header()] = None):
    line = format_result(req.result)
    logger.info("render rid=%s output=%s", x_request_id, line)
    return ApiOk(data={"output": line, "result": req.result.model_dump()})

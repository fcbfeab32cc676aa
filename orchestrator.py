from fastapi import FastAPI, Response
from pydantic import BaseModel
from typing import Dict
from models import ApiErr
from render import output_name
import asyncio, httpx, logging, os, uuid
from urllib.parse import quote

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger("calc.gateway")

# environment variables
LEX = os.getenv("LEX_URL", "http://lexer-svc:8000/lex")
RUN = os.getenv("RUN_URL", "http://parser-svc:8000/run")  # parser forwards to render
TIMEOUT = float(os.getenv("UPSTREAM_TIMEOUT", "10"))

app = FastAPI(title="gateway")

@app.get("/healthz")
def healthz():
    return {"ok": True}

def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=TIMEOUT)

class EvaluateReq(BaseModel):
    source: str

class BatchReq(BaseModel):
    sources: Dict[str, str]

class DownloadReq(BaseModel):
    source: str
    filename: str = "expression.txt"

async def _pipeline(c: httpx.AsyncClient, source: str) -> dict:
    rid = str(uuid.uuid4())
    hdr = {"X-Request-Id": rid}
    logger.info("pipeline rid=%s chars=%d", rid, len(source))
    step = "lex"
    try:
        # Step 1: Lexical analysis
        lex = (await c.post(LEX, json={"source": source}, headers=hdr)).json()
        if not lex.get("ok"):
            return lex
        # Step 2: tokens to parser (/run), which evaluates and renders
        step = "parse"
        return (await c.post(RUN, json={"tokens": lex["data"]}, headers=hdr)).json()
    except (httpx.HTTPError, ValueError) as e:  # ValueError: body is not JSON
        logger.warning("pipeline rid=%s upstream failure: %s", rid, e)
        return ApiErr(phase=step, code=f"E_FORWARD_{step.upper()}",
                      msg=f"Failed to contact {step} service: {e}").model_dump()

@app.post("/evaluate")
async def evaluate(req: EvaluateReq):
    async with _client() as c:
        return await _pipeline(c, req.source)

@app.post("/evaluate/batch")
async def evaluate_batch(req: BatchReq):
    names = list(req.sources)
    async with _client() as c:
        # expressions share no state, so they run side by side
        results = await asyncio.gather(*(_pipeline(c, req.sources[n]) for n in names))
    # keyed by input name; distinct inputs may share an output name
    return {"ok": True, "data": {n: {"output_name": output_name(n), "result": r}
                                 for n, r in zip(names, results)}}

def _disposition(name: str) -> str:
    if name.isascii():
        return f"attachment; filename={name}"
    # RFC 5987; header values must stay latin-1
    return f"attachment; filename=\"result.txt\"; filename*=UTF-8''{quote(name)}"

@app.post("/download")
async def download(req: DownloadReq):
    async with _client() as c:
        result = await _pipeline(c, req.source)
    if not result.get("ok"):
        return result

    text = (result["data"]["output"] + "\n").encode()
    headers = {"Content-Disposition": _disposition(output_name(req.filename))}
    return Response(content=text, media_type="application/octet-stream", headers=headers)

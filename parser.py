from fastapi import FastAPI, Header
from pydantic import BaseModel
from typing import Annotated, Iterable, List, Optional, Union
from models import Token, EvalResult, EvalError, ApiOk, ApiErr
from lexer import tokenize
import logging, math, os, requests

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger("calc.parser")

app = FastAPI(title="parser-svc")
RENDER_URL = os.getenv("RENDER_URL", "http://render-svc:8000")
# divisors closer to zero than this are rejected; 0 means exact comparison
DIV_EPSILON = float(os.getenv("CALC_DIV_EPSILON", "1e-15"))

@app.get("/healthz")
def healthz():
    return {"ok": True}

class EvalFailure(Exception):
    def __init__(self, position: int, code: str, msg: str):
        super().__init__(f"{code} at {position}: {msg}")
        self.position = position
        self.code = code
        self.msg = msg

# helpers
class Stream:
    """One-token lookahead over a (possibly lazy) token iterable.

    Advancing onto an INVALID token fails immediately.
    """
    def __init__(self, toks: Iterable[Token]):
        self.t = iter(toks); self.cur: Optional[Token] = None
        self.advance()
    def peek(self) -> Token: return self.cur
    def advance(self):
        prev = self.cur
        tok = next(self.t, None)
        if tok is None:
            # hand-built lists may omit END; the lexer never does
            if prev is not None and prev.type == "END": tok = prev
            else: tok = Token(type="END", position=prev.position + len(prev.lexeme) if prev else 1)
        self.cur = tok
        if tok.type == "INVALID":
            raise EvalFailure(tok.position, "E_LEX_INVALID", f"Unexpected {tok.lexeme!r}")
    def pop(self) -> Token:
        x = self.cur; self.advance(); return x
    def match(self, *kinds) -> Optional[Token]:
        if self.cur.type in kinds: return self.pop()
        return None

def _finite(x: float, op: Token) -> float:
    if not math.isfinite(x):
        raise EvalFailure(op.position, "E_EVAL_OVERFLOW", f"Result of {op.lexeme!r} out of range")
    return x

def evaluate_tokens(tokens: Iterable[Token], div_epsilon: float = DIV_EPSILON) -> EvalResult:
    """Parse and evaluate ``additive END``; the first failure is the result."""
    s: Optional[Stream] = None

    def primary():
        t = s.peek()
        if t.type == "NUMBER":
            s.pop(); return t.value
        if t.type == "LPAREN":
            s.pop()
            v = additive()
            if s.peek().type != "RPAREN":
                raise EvalFailure(s.peek().position, "E_PARSE_RPAREN", f"Expected RPAREN, got {s.peek().type}")
            s.pop()
            return v
        raise EvalFailure(t.position, "E_PARSE_PRIMARY", f"Bad token {t.type}")

    def power():
        base = primary()
        op = s.match("POW")
        if op is None:
            return base
        exp = power()  # right-associative
        if base == 0.0 and exp < 0:
            raise EvalFailure(op.position, "E_EVAL_ZERO_NEG_POW", "Zero raised to negative power")
        if base < 0 and not exp.is_integer():
            raise EvalFailure(op.position, "E_EVAL_NEG_FRAC_POW", "Negative base with fractional exponent")
        try:
            return _finite(math.pow(base, exp), op)
        except OverflowError:
            raise EvalFailure(op.position, "E_EVAL_OVERFLOW", "Result of '**' out of range") from None

    def term():
        v = power()
        while True:
            op = s.match("STAR", "SLASH")
            if op is None:
                return v
            rhs = power()
            if op.type == "STAR":
                v = _finite(v * rhs, op)
            else:
                if rhs == 0.0 or abs(rhs) < div_epsilon:
                    raise EvalFailure(op.position, "E_EVAL_DIV_ZERO", "Division by zero")
                v = _finite(v / rhs, op)

    def additive():
        v = term()
        while True:
            op = s.match("PLUS", "MINUS")
            if op is None:
                return v
            rhs = term()
            v = _finite(v + rhs if op.type == "PLUS" else v - rhs, op)

    try:
        s = Stream(tokens)
        value = additive()
        if s.peek().type != "END":
            raise EvalFailure(s.peek().position, "E_PARSE_TRAILING", "Extra characters after expression")
        return EvalResult.success(value)
    except EvalFailure as e:
        logger.debug("evaluation failed: %s", e)
        return EvalResult.failure(e.position, e.code, e.msg)
    except RecursionError:
        logger.warning("expression nested too deeply at %d", s.peek().position)
        return EvalResult.failure(s.peek().position, "E_PARSE_DEPTH", "Expression nested too deeply")

def evaluate(source: Union[str, bytes], div_epsilon: float = DIV_EPSILON) -> EvalResult:
    """Evaluate one text buffer: a finite value, or the position of the first fault."""
    return evaluate_tokens(tokenize(source), div_epsilon)

PHASES = {"E_LEX": "lex", "E_PARSE": "parse", "E_EVAL": "eval"}

def to_api_err(err: EvalError) -> ApiErr:
    prefix = "_".join(err.code.split("_")[:2])
    return ApiErr(phase=PHASES[prefix], position=err.position, code=err.code, msg=err.msg)

class EvalReq(BaseModel):
    tokens: List[Token]

@app.post("/evaluate")
def evaluate_api(req: EvalReq, x_request_id: Annotated[Optional[str], Header()] = None):
    res = evaluate_tokens(req.tokens)
    logger.info("evaluate rid=%s ok=%s", x_request_id, res.ok)
    if res.ok:
        return ApiOk(data={"value": res.value})
    return to_api_err(res.error)

@app.post("/run")
def run_api(req: EvalReq, x_request_id: Annotated[Optional[str], Header()] = None):
    res = evaluate_tokens(req.tokens)
    logger.info("run rid=%s ok=%s code=%s", x_request_id, res.ok, res.error.code if res.error else None)
    hdr = {"X-Request-Id": x_request_id} if x_request_id else {}
    try:
        # forward result to render
        r = requests.post(f"{RENDER_URL}/render", json={"result": res.model_dump()}, headers=hdr, timeout=5)
        r.raise_for_status()
        return r.json()
    except requests.RequestException as e:
        logger.warning("run rid=%s render unreachable: %s", x_request_id, e)
        return ApiErr(phase="render", code="E_FORWARD_RENDER", msg=f"Failed to contact render: {e}")

from fastapi import FastAPI, Header
from pydantic import BaseModel
from typing import Annotated, Iterator, List, Optional, Union
from models import Token, ApiOk, ApiErr
import logging, math, os, re

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger("calc.lexer")

app = FastAPI(title="lexer-svc")

@app.get("/healthz")
def healthz():
    return {"ok":True}

WS = " \t\r\n"
DIGITS = "0123456789"
# strtod-style decimal literal; the exponent is only taken when digits follow
NUMBER = re.compile(r"(?:[0-9]+(?:\.[0-9]*)?|\.[0-9]+)(?:[eE][+-]?[0-9]+)?")
OPS = {"+":"PLUS","-":"MINUS","*":"STAR","/":"SLASH","(":"LPAREN",")":"RPAREN"}

class Lexer:
    """Pull-based scanner over one source buffer.

    Positions are 1-based byte offsets of a token's first character: the
    buffer is decoded as latin-1, and ``str`` input is UTF-8 encoded first.
    """

    def __init__(self, source: Union[str, bytes]):
        if isinstance(source, str):
            source = source.encode("utf-8")
        self.src = bytes(source).decode("latin-1")
        self.i = 0
        self.first_error: Optional[int] = None
        self.line_start = True  # only whitespace since the last newline

    def __iter__(self) -> Iterator[Token]:
        while True:
            tok = self.next_token()
            yield tok
            if tok.type == "END":
                return

    def skip(self):
        s = self.src
        while self.i < len(s):
            c = s[self.i]
            if c in WS:
                if c == "\n":
                    self.line_start = True
                self.i += 1
            elif c == "#" and self.line_start:
                nl = s.find("\n", self.i)
                self.i = len(s) if nl < 0 else nl + 1
            else:
                break

    def next_token(self) -> Token:
        self.skip()
        s = self.src; i = self.i; pos = i + 1
        if i >= len(s):
            return self._emit(Token(type="END", position=pos), 0)
        self.line_start = False
        c = s[i]
        # a sign directly before a digit or "." belongs to the literal, whatever precedes it
        signed = (c in "+-" and i + 1 < len(s) and (s[i+1] in DIGITS or s[i+1] == "."))
        if c in DIGITS or c == "." or signed:
            return self._number(signed)
        if s.startswith("**", i):
            return self._emit(Token(type="POW", lexeme="**", position=pos), 2)
        if c in OPS:
            return self._emit(Token(type=OPS[c], lexeme=c, position=pos), 1)
        return self._invalid(c, "unexpected character")

    def _number(self, signed: bool) -> Token:
        s = self.src; i = self.i
        m = NUMBER.match(s, i + 1 if signed else i)
        if not m:
            return self._invalid(s[i], "malformed number")
        text = s[i:m.end()]
        value = float(text)
        if not math.isfinite(value):
            return self._invalid(text, "number out of range")
        return self._emit(Token(type="NUMBER", lexeme=text, position=i+1, value=value), len(text))

    def _invalid(self, text: str, why: str) -> Token:
        pos = self.i + 1
        if self.first_error is None:
            self.first_error = pos
            logger.debug("lex error at %d: %s %r", pos, why, text)
        return self._emit(Token(type="INVALID", lexeme=text, position=pos), len(text))

    def _emit(self, tok: Token, width: int) -> Token:
        self.i += width
        return tok

def tokenize(source: Union[str, bytes]) -> Iterator[Token]:
    """Lazily yield tokens up to and including END."""
    return iter(Lexer(source))

class LexReq(BaseModel):
    source: str
    strict: bool = False

@app.post("/lex")
def lex(req: LexReq, x_request_id: Annotated[Optional[str], Header()] = None):
    out: List[Token] = []
    for tok in tokenize(req.source):
        if tok.type == "INVALID" and req.strict:
            logger.info("lex rid=%s rejected at %d", x_request_id, tok.position)
            return ApiErr(phase="lex", position=tok.position, code="E_LEX_UNK_CHAR",
                          msg=f"Unexpected {tok.lexeme!r}")
        out.append(tok)
    logger.info("lex rid=%s chars=%d tokens=%d", x_request_id, len(req.source), len(out))
    return ApiOk(data=[t.model_dump() for t in out])

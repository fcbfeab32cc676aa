from pydantic import BaseModel, ConfigDict, model_validator
from typing import Optional, Any, Literal
import math

TokenType = Literal["NUMBER","PLUS","MINUS","STAR","SLASH","POW",
                    "LPAREN","RPAREN","END","INVALID"]

class Token(BaseModel):
    model_config = ConfigDict(frozen=True)
    type: TokenType
    lexeme: str = ""
    position: int
    value: Optional[float] = None

    @model_validator(mode="after")
    def _number_has_value(self):
        if self.type == "NUMBER" and self.value is None:
            raise ValueError("NUMBER token needs a value")
        return self

class EvalError(BaseModel):
    model_config = ConfigDict(frozen=True)
    position: int
    code: str
    msg: str = ""

class EvalResult(BaseModel):
    """Outcome of one evaluation: a finite value or the first error."""
    value: Optional[float] = None
    error: Optional[EvalError] = None

    @model_validator(mode="after")
    def _one_of(self):
        if (self.value is None) == (self.error is None):
            raise ValueError("exactly one of value/error must be set")
        if self.value is not None and not math.isfinite(self.value):
            raise ValueError("value must be finite")
        return self

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: float) -> "EvalResult":
        return cls(value=value)

    @classmethod
    def failure(cls, position: int, code: str, msg: str = "") -> "EvalResult":
        return cls(error=EvalError(position=position, code=code, msg=msg))

Phase = Literal["lex","parse","eval","render"]

class ApiErr(BaseModel):
    ok: Literal[False] = False
    phase: Phase
    position: Optional[int] = None
    code: str
    msg: str

class ApiOk(BaseModel):
    ok: Literal[True] = True
    data: Any

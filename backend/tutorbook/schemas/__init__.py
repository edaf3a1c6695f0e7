from tutorbook.schemas.user import UserCreate, AdminUserCreate, UserResponse, UserLogin, Token
from tutorbook.schemas.lesson import LessonCreate, LessonResponse, LessonListResponse
from tutorbook.schemas.booking import BookingCreate, BookingResponse, BookingCancelResponse
from tutorbook.schemas.credit import CreditOperation, BalanceResponse, TransactionResponse
from tutorbook.schemas.swap import SwapRequest, SwapResponse, SwapValidationResponse
from tutorbook.schemas.template import TemplateCreate, TemplateResponse, ApplyTemplateRequest

__all__ = [
    "UserCreate", "AdminUserCreate", "UserResponse", "UserLogin", "Token",
    "LessonCreate", "LessonResponse", "LessonListResponse",
    "BookingCreate", "BookingResponse", "BookingCancelResponse",
    "CreditOperation", "BalanceResponse", "TransactionResponse",
    "SwapRequest", "SwapResponse", "SwapValidationResponse",
    "TemplateCreate", "TemplateResponse", "ApplyTemplateRequest",
]

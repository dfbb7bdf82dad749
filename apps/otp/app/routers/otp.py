from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse
from prometheus_client import Counter

from otpcore import OTPErrorKind, OTPSendResult, OTPService
from otpcore.phone_utils import normalize_phone

from ..schemas import OtpStatsOut, SendOtpIn, SendOtpOut, VerifyOtpIn, VerifyOtpOut


router = APIRouter(prefix="/api/otp", tags=["otp"])

OTP_SEND = Counter("otp_send_total", "OTP issue attempts", ["outcome"])
OTP_VERIFY = Counter("otp_verify_total", "OTP verification attempts", ["outcome"])

_STATUS_BY_KIND = {
    OTPErrorKind.INVALID_PHONE: status.HTTP_400_BAD_REQUEST,
    OTPErrorKind.INVALID_CODE_FORMAT: status.HTTP_400_BAD_REQUEST,
    OTPErrorKind.NOT_FOUND_OR_EXPIRED: status.HTTP_400_BAD_REQUEST,
    OTPErrorKind.MISMATCH: status.HTTP_400_BAD_REQUEST,
    OTPErrorKind.RATE_LIMITED: status.HTTP_429_TOO_MANY_REQUESTS,
    OTPErrorKind.DELIVERY_FAILED: status.HTTP_503_SERVICE_UNAVAILABLE,
    OTPErrorKind.INTERNAL_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def get_service(request: Request) -> OTPService:
    return request.app.state.otp_service


def _status_for(kind: OTPErrorKind | None) -> int:
    if kind is None:
        return status.HTTP_200_OK
    return _STATUS_BY_KIND.get(kind, status.HTTP_500_INTERNAL_SERVER_ERROR)


def _send_response(phone: str, result: OTPSendResult) -> JSONResponse:
    OTP_SEND.labels(result.reason.value if result.reason else "ok").inc()
    body = SendOtpOut(phone=phone, **result.to_dict())
    content = body.model_dump(exclude_none=True)
    content.setdefault("reason", None)
    headers = {}
    if result.reason is OTPErrorKind.RATE_LIMITED and result.retry_after:
        headers["Retry-After"] = str(result.retry_after)
    return JSONResponse(
        status_code=_status_for(result.reason),
        content=content,
        headers=headers,
    )


@router.post("/send", response_model=SendOtpOut)
async def send_otp(payload: SendOtpIn, service: OTPService = Depends(get_service)):
    result = await service.send_otp(payload.phone)
    return _send_response(payload.phone, result)


@router.post("/resend", response_model=SendOtpOut)
async def resend_otp(payload: SendOtpIn, service: OTPService = Depends(get_service)):
    result = await service.resend_otp(payload.phone)
    return _send_response(payload.phone, result)


@router.post("/verify", response_model=VerifyOtpOut)
async def verify_otp(payload: VerifyOtpIn, service: OTPService = Depends(get_service)):
    result = await service.verify_otp(payload.phone, payload.code)
    OTP_VERIFY.labels(result.reason.value if result.reason else "ok").inc()
    return JSONResponse(status_code=_status_for(result.reason), content=VerifyOtpOut(**result.to_dict()).model_dump())


@router.get("/stats", response_model=OtpStatsOut)
async def otp_stats(phone: str = Query(min_length=1), service: OTPService = Depends(get_service)):
    stats = await service.get_otp_stats(normalize_phone(phone))
    return OtpStatsOut(**stats.to_dict())

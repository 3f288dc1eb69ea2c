import logging
import sys
from typing import Optional


# boto3/botocore 는 DEBUG 에서 요청 본문까지 쏟아내므로 별도로 묶어둔다.
_NOISY_LOGGERS = ("botocore", "boto3", "urllib3", "s3transfer")


def setup_logging(verbosity: int = 0) -> None:
    level = logging.INFO
    if verbosity >= 1:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )

    # -vv 이상일 때만 SDK 내부 로그까지 노출
    sdk_level = logging.DEBUG if verbosity >= 2 else logging.WARNING
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(sdk_level)


def get_logger(name: str, logger: Optional[logging.Logger] = None) -> logging.Logger:
    """주입된 logger 가 있으면 그대로 쓰고, 없으면 모듈 이름으로 가져온다."""
    if logger is not None:
        return logger
    return logging.getLogger(name)

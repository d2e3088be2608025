"""Static checks run before any plan (format, init without backend, validate)."""

from __future__ import annotations

import logging

from ..engine import ProvisioningEngine
from ..errors import ValidationError
from ..models import Environment

logger = logging.getLogger(__name__)


def validate_configuration(
    engine: ProvisioningEngine,
    environment: Environment,
    *,
    check_format: bool = True,
) -> None:
    """Raise ``ValidationError`` if `environment`'s configuration is not clean."""
    if check_format:
        fmt = engine.fmt_check()
        if not fmt.ok:
            raise ValidationError(
                "terraform fmt -check found unformatted files",
                environment=environment,
                detail=fmt.message,
            )
        logger.info("✅ Terraform format check passed")

    init = engine.init(environment, backend=False)
    if not init.ok:
        raise ValidationError("terraform init -backend=false failed", environment=environment, detail=init.message)

    result = engine.validate(environment)
    if not result.ok:
        raise ValidationError("terraform validate failed", environment=environment, detail=result.message)
    logger.info("✅ Terraform validation passed for %s", environment.value)

"""Endpoints for an external scheduler, guarded by the internal token."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from slotrank.api.deps import get_evaluator, require_internal_token
from slotrank.engine.evaluator import Evaluator

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/cron/evaluate-predictions", dependencies=[Depends(require_internal_token)])
def evaluate_predictions(evaluator: Evaluator = Depends(get_evaluator)) -> dict:
    report = evaluator.evaluate_expired()
    logger.info("Cron evaluation: %s", report.to_dict())
    return report.to_dict()

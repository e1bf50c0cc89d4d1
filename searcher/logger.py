"""
Structured logging configuration for the slot searcher.
Uses structlog for rich, structured logging output.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

import structlog
from rich.console import Console
from rich.logging import RichHandler

from searcher.config import SearcherConfig


# Rich console for pretty output
console = Console()


def add_timestamp(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add ISO timestamp to log events."""
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def add_component(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Ensure component is present in log events."""
    if "component" not in event_dict:
        event_dict["component"] = "main"
    return event_dict


def setup_logging(config: SearcherConfig) -> None:
    """Configure structured logging for the application."""
    log_level = getattr(logging, config.monitoring.log_level.upper(), logging.INFO)

    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        handlers=[
            RichHandler(
                console=console,
                rich_tracebacks=True,
                show_time=True,
                show_path=False,
            )
        ],
    )

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("websockets").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    processors = [
        structlog.stdlib.filter_by_level,
        add_timestamp,
        add_component,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if config.development.debug_mode:
        # Pretty console output for development
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    else:
        # JSON output for production
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(component: str) -> structlog.stdlib.BoundLogger:
    """Get a logger instance bound to a specific component."""
    return structlog.get_logger().bind(component=component)


class PipelineLogger:
    """
    Emits one structured event per pipeline stage outcome.

    These events are the observability boundary: an external collector
    consumes them for metrics and trade logs.
    """

    def __init__(self):
        self.logger = get_logger("pipeline")

    def log_delta_skipped(self, account_id: str, slot: int, reason: str) -> None:
        self.logger.debug(
            "delta_skipped",
            account_id=account_id,
            slot=slot,
            reason=reason,
        )

    def log_opportunity_detected(
        self,
        detector_id: str,
        opportunity_id: str,
        dedup_key: Iterable[str],
        slot: int,
        input_amount: int,
        output_amount: int,
    ) -> None:
        """Log detection of a candidate opportunity."""
        self.logger.info(
            "opportunity_detected",
            detector=detector_id,
            opportunity_id=opportunity_id,
            dedup_key=sorted(dedup_key),
            slot=slot,
            input_amount=input_amount,
            output_amount=output_amount,
        )

    def log_opportunity_scored(
        self,
        opportunity_id: str,
        expected_profit: int,
        confidence: float,
        capital_required: int,
        risk_flags: Iterable[str],
    ) -> None:
        self.logger.info(
            "opportunity_scored",
            opportunity_id=opportunity_id,
            expected_profit=expected_profit,
            confidence=f"{confidence:.3f}",
            capital_required=capital_required,
            risk_flags=sorted(risk_flags),
        )

    def log_candidate_rejected(
        self,
        opportunity_id: str,
        stage: str,
        reason: str,
        detail: Optional[str] = None,
    ) -> None:
        """Log a candidate dropped at any stage, with its reason."""
        self.logger.info(
            "candidate_rejected",
            opportunity_id=opportunity_id,
            stage=stage,
            reason=reason,
            detail=detail,
        )

    def log_bundle_submitted(
        self,
        bundle_id: str,
        opportunity_id: str,
        dedup_key: Iterable[str],
        transactions: int,
        tip_lamports: int,
        target_slot: int,
    ) -> None:
        self.logger.info(
            "bundle_submitted",
            bundle_id=bundle_id,
            opportunity_id=opportunity_id,
            dedup_key=sorted(dedup_key),
            transactions=transactions,
            tip_lamports=tip_lamports,
            target_slot=target_slot,
        )

    def log_submission_outcome(
        self,
        bundle_id: str,
        status: str,
        latency_ms: float,
        reason: Optional[str] = None,
        relay_bundle_id: Optional[str] = None,
    ) -> None:
        """Log the terminal outcome of a submission."""
        emoji = "🟢" if status == "accepted" else "🔴"
        self.logger.info(
            f"{emoji} submission_outcome",
            bundle_id=bundle_id,
            status=status,
            latency_ms=f"{latency_ms:.1f}",
            reason=reason,
            relay_bundle_id=relay_bundle_id,
        )

    def log_cycle_summary(
        self,
        slot: int,
        detected: int,
        admitted: int,
        submitted: int,
        duration_ms: float,
    ) -> None:
        self.logger.debug(
            "📊 cycle_summary",
            slot=slot,
            detected=detected,
            admitted=admitted,
            submitted=submitted,
            duration_ms=f"{duration_ms:.1f}",
        )


# Global logger instance
pipeline_logger = PipelineLogger()

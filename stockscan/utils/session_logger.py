"""
==============================================================================
Scan Session Logger Module
==============================================================================

Writes a plain-text summary when a scanner session that committed stock
movements closes.

Log File Contents:
-----------------
- Session id, mode, open/close times and duration
- Every committed movement with stock before and after
- Totals: sales, revenue, units sold, stock-in/out counts

File Format:
-----------
scan_{session_id}_{YYYY-MM-DD}_{HH-MM-SS}.log

==============================================================================
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

from stockscan.config import get_settings
from stockscan.scanner.models import TransactionReceipt


# Module logger
logger = logging.getLogger(__name__)


class ScanSessionLogger:
    """
    Generator for scan session summary files.

    Example:
        >>> session_logger = ScanSessionLogger()
        >>> session_logger.generate_log("a1b2c3", "inventory", opened_at, receipts, totals)
        'storage/logs/scan_a1b2c3_2025-01-15_10-30-45.log'
    """

    def __init__(self, log_dir: Optional[Path] = None) -> None:
        self._log_dir = log_dir or get_settings().log_path
        self._log_dir.mkdir(parents=True, exist_ok=True)

    def generate_log(
        self,
        session_id: str,
        mode: str,
        opened_at: datetime,
        receipts: Iterable[TransactionReceipt],
        totals,
        closed_at: Optional[datetime] = None
    ) -> str:
        """
        Write the summary file.

        Args:
            session_id: Scanner session identifier
            mode: Session mode name
            opened_at: Session open time
            receipts: Committed receipts, oldest first
            totals: SessionTotals of the session
            closed_at: Close time (now if None)

        Returns:
            Path to the written file
        """
        closed_at = closed_at or datetime.now(timezone.utc)
        filename = f"scan_{session_id}_{closed_at.strftime('%Y-%m-%d_%H-%M-%S')}.log"
        filepath = self._log_dir / filename

        content = self._format_log(session_id, mode, opened_at, closed_at, list(receipts), totals)
        filepath.write_text(content, encoding="utf-8")

        logger.info(f"✅ Generated session log: {filepath}")
        return str(filepath)

    def _format_log(self, session_id, mode, opened_at, closed_at, receipts, totals) -> str:
        separator = "=" * 80
        lines = [
            separator,
            "SCAN SESSION LOG",
            separator,
            "",
            f"Session:         {session_id}",
            f"Mode:            {mode.upper()}",
            f"Opened At:       {self._format_datetime(opened_at)}",
            f"Closed At:       {self._format_datetime(closed_at)}",
            f"Duration:        {self._format_duration((closed_at - opened_at).total_seconds())}",
            "",
            separator,
            "MOVEMENTS",
            separator,
            "",
        ]

        for receipt in receipts:
            lines.extend([
                f"[{receipt.operation.value}]{' (replayed)' if receipt.replayed else ''}",
                f"    Item:        {receipt.item.name} ({receipt.item.code})",
                f"    Quantity:    {receipt.quantity:g} {receipt.item.unit_of_measure}",
                f"    Unit Price:  {receipt.unit_price:.2f}",
                f"    Stock:       {receipt.stock_before:g} → {receipt.stock_after:g}",
                f"    Key:         {receipt.idempotency_key}",
            ])
            if receipt.reason:
                lines.append(f"    Reason:      {receipt.reason}")
            lines.append("")

        lines.extend([
            separator,
            "SUMMARY",
            separator,
            "",
            f"Sales:              {totals.sale_count}",
            f"Revenue:            {totals.revenue:.2f}",
            f"Units Sold:         {totals.units_sold:g}",
            f"Stock-In:           {totals.stock_in_count}",
            f"Stock-Out:          {totals.stock_out_count}",
            "",
            separator,
        ])
        return "\n".join(lines)

    @staticmethod
    def _format_datetime(dt: Optional[datetime]) -> str:
        if dt is None:
            return "N/A"
        return dt.strftime("%Y-%m-%d %H:%M:%S")

    @staticmethod
    def _format_duration(seconds: float) -> str:
        if seconds < 0:
            return "N/A"
        minutes, secs = divmod(int(seconds), 60)
        hours, minutes = divmod(minutes, 60)
        if hours:
            return f"{hours}h {minutes:02d}m {secs:02d}s"
        if minutes:
            return f"{minutes}m {secs:02d}s"
        return f"{secs}s"

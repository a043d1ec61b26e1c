"""
Main pipeline orchestrator for clinic_reconcile.

Coordinates the matching run (ingestion, validation, optional coordinate
enrichment, classification and reporting), review triage, and the
correction run that replays confirmed fixes into the clinic store.
"""

import argparse
import logging
import sys
import time
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ..audit.audit_logger import AuditLogger
from ..config import DEFAULT_CONFIG_PATH, ScoringConfig, load_config, validate_config
from ..errors import ClinicReconcileError
from ..ingestion.row_validator import validate_source_rows
from ..ingestion.spreadsheet_loader import SpreadsheetLoader, rows_to_source_records
from ..match.classifier import MatchClassifier, split_resolved
from ..merge.correction_applier import CorrectionApplier
from ..models import SourceRecord
from ..normalize.address_normalizer import AddressNormalizer
from ..normalize.name_normalizer import NameNormalizer
from ..places.enricher import CoordinateEnricher
from ..reporting.report_writer import ReconciliationReportWriter, load_report
from ..review.triage import flag_low_confidence, load_corrections, write_correction_draft
from ..store.clinic_store import ClinicStore, SqliteClinicStore

logger = logging.getLogger(__name__)


class ReconciliationPipeline:
    """
    Main pipeline orchestrator for clinic_reconcile.

    Matching never writes to the clinic store; only ``run_corrections``
    does, and only from a confirmed corrections file.
    """

    def __init__(self, config_path: str = DEFAULT_CONFIG_PATH,
                 config: Optional[Dict[str, Any]] = None,
                 clinic_store: Optional[ClinicStore] = None,
                 audit_logger: Optional[AuditLogger] = None,
                 enricher: Optional[CoordinateEnricher] = None):
        """
        Initialize pipeline with configuration.

        Args:
            config_path: Path to configuration file
            config: Configuration dictionary (overrides ``config_path``)
            clinic_store: Clinic store (defaults to SQLite at storage.clinic_db_path)
            audit_logger: Audit trail (defaults to SQLite at storage.audit_db_path)
            enricher: Coordinate enricher (defaults to one built from ``places``)
        """
        self.config = config if config is not None else load_config(config_path)
        if not validate_config(self.config):
            raise ClinicReconcileError(f"Invalid configuration: {config_path}")

        storage = self.config.get("storage", {})
        normalization = self.config.get("normalization", {})

        self.scoring = ScoringConfig.from_dict(self.config.get("scoring", {}))
        self.name_normalizer = NameNormalizer(normalization.get("name"))
        self.address_normalizer = AddressNormalizer(normalization.get("address"))
        self.classifier = MatchClassifier(self.scoring, self.name_normalizer, self.address_normalizer)

        self.clinic_store = clinic_store or SqliteClinicStore(storage.get("clinic_db_path", "data/clinics.db"))
        self.audit_logger = audit_logger or AuditLogger(storage.get("audit_db_path", "data/audit.db"))
        self.report_writer = ReconciliationReportWriter.from_config(self.config)
        self._enricher = enricher

        # Pipeline state
        self.pipeline_start_time = None
        self.stage_times = {}

        logger.info("Initialized reconciliation pipeline")

    @property
    def enricher(self) -> CoordinateEnricher:
        if self._enricher is None:
            self._enricher = CoordinateEnricher.from_config(self.config)
        return self._enricher

    def _start_stage_timer(self, stage_name: str):
        """Start timing for a pipeline stage."""
        self.stage_times[stage_name] = time.time()
        logger.info(f"Starting stage: {stage_name}")

    def _end_stage_timer(self, stage_name: str):
        """End timing for a pipeline stage."""
        if stage_name in self.stage_times:
            duration = time.time() - self.stage_times[stage_name]
            self.stage_times[stage_name] = duration
            logger.info(f"Completed stage: {stage_name} in {duration:.2f} seconds")

    def load_sources(self, input_path: str) -> Tuple[List[SourceRecord], Dict[str, Any]]:
        """
        Load, validate and convert the bulk export.

        Args:
            input_path: Path to the bulk file

        Returns:
            Tuple of (source_records, validation_summary)
        """
        self._start_stage_timer("data_ingestion")

        ingestion = self.config.get("ingestion", {})
        raw_df = SpreadsheetLoader(ingestion).load(input_path)
        clean_df, validation_summary = validate_source_rows(raw_df, ingestion)
        sources = rows_to_source_records(clean_df, self.address_normalizer)

        self._end_stage_timer("data_ingestion")
        return sources, validation_summary

    def enrich_sources(self, sources: List[SourceRecord]) -> List[SourceRecord]:
        """Fill in missing coordinates from the places provider."""
        self._start_stage_timer("coordinate_enrichment")

        if not self.enricher.enabled:
            logger.warning("Coordinate enrichment requested but no places API key is configured")
            enriched = sources
        else:
            enriched = self.enricher.enrich(sources)

        self._end_stage_timer("coordinate_enrichment")
        return enriched

    def run_analysis(self, input_path: str, enrich: bool = False) -> Dict[str, Any]:
        """
        Run the matching pipeline and write the review report.

        Args:
            input_path: Path to the bulk export
            enrich: Look up missing coordinates before matching

        Returns:
            Run summary dictionary
        """
        self.pipeline_start_time = time.time()
        logger.info(f"Starting reconciliation analysis for {input_path}")

        # 1. Ingestion and validation
        sources, validation_summary = self.load_sources(input_path)

        # 2. Coordinate enrichment
        if enrich:
            sources = self.enrich_sources(sources)

        # 3. Matching against a fixed snapshot of the store
        self._start_stage_timer("matching")
        targets = self.clinic_store.fetch_targets()
        unresolved, linked = split_resolved(sources, targets)
        logger.info(f"Found {len(targets)} clinics; {len(linked)} source rows already linked, "
                    f"{len(unresolved)} to analyze")
        decisions = self.classifier.classify_all(unresolved, targets)
        statistics = self.classifier.get_classification_statistics(decisions)
        self._end_stage_timer("matching")

        # 4. Reporting
        self._start_stage_timer("report_generation")
        artifact = self.report_writer.write(decisions, total_rows=len(sources),
                                            total_unmatched=len(unresolved))
        self._end_stage_timer("report_generation")

        total_duration = time.time() - self.pipeline_start_time
        logger.info(f"Analysis completed successfully in {total_duration:.2f} seconds")

        return {
            "run_id": artifact.run_id,
            "report_path": str(artifact.path),
            "validation": validation_summary,
            "total_rows": len(sources),
            "already_linked": len(linked),
            "summary": artifact.report["summary"],
            "classification_statistics": statistics,
            "stage_times": dict(self.stage_times),
            "total_duration": total_duration
        }

    def run_triage(self, report_path: str, output_path: Optional[str] = None,
                   threshold: Optional[int] = None) -> Dict[str, Any]:
        """
        Flag doubtful matches of a report and draft the correction file.

        Args:
            report_path: Path to a matching report
            output_path: Draft location (defaults next to the report)
            threshold: Confidence below which matches are reviewed

        Returns:
            Triage summary dictionary
        """
        self._start_stage_timer("triage")

        if threshold is None:
            threshold = self.config.get("review", {}).get("low_confidence_threshold", 60)
        if output_path is None:
            report_file = Path(report_path)
            output_path = str(report_file.with_name(f"{report_file.stem}-corrections.json"))

        report = load_report(report_path)
        suspicious, confident = flag_low_confidence(report, threshold)
        draft = write_correction_draft(report, output_path, threshold, audit_logger=self.audit_logger)

        self._end_stage_timer("triage")
        return {
            "report_path": report_path,
            "draft_path": output_path,
            "threshold": threshold,
            "suspicious": len(suspicious),
            "confident": len(confident),
            "definitely_wrong": len(draft["definitelyWrong"]),
            "probably_correct": len(draft["probablyCorrect"])
        }

    def run_corrections(self, corrections_path: str) -> Dict[str, Any]:
        """
        Apply a confirmed corrections file to the clinic store.

        Args:
            corrections_path: Path to the confirmed corrections

        Returns:
            Correction summary dictionary
        """
        self._start_stage_timer("corrections")

        actions = load_corrections(corrections_path)
        run_id = uuid.uuid4().hex
        applier = CorrectionApplier(self.clinic_store, self.audit_logger, run_id=run_id)
        summary = applier.apply(actions)

        self._end_stage_timer("corrections")

        result = summary.to_dict()
        result["run_id"] = run_id
        result["manual_followups"] = [
            {"action_id": a.action_id, "source_name": a.source.name, "state": a.state.value,
             "new_target_id": a.new_target_id, "error": a.error}
            for a in actions if a.needs_manual_followup
        ]
        return result


def _print_banner(title: str, lines: List[str]):
    print("\n" + "=" * 50)
    print(title)
    print("=" * 50)
    for line in lines:
        print(line)
    print("=" * 50)


def _setup_logging(log_level: str):
    # Log directory must exist before the file handler opens it
    Path("logs").mkdir(exist_ok=True)
    logging.basicConfig(
        level=getattr(logging, log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler("logs/clinic_reconcile.log")
        ]
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Clinic Record Reconciliation")
    parser.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="Configuration file path")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])

    subparsers = parser.add_subparsers(dest="command", required=True)

    analyze = subparsers.add_parser("analyze", help="Match a bulk export against the clinic store")
    analyze.add_argument("--input", required=True, help="Bulk export path (.xlsx, .xls, .csv, .json)")
    analyze.add_argument("--enrich", action="store_true",
                         help="Look up missing coordinates at the places provider")

    triage = subparsers.add_parser("triage", help="Draft corrections for low-confidence matches")
    triage.add_argument("--report", required=True, help="Matching report path")
    triage.add_argument("--output", help="Correction draft path")
    triage.add_argument("--threshold", type=int, help="Confidence below which matches are reviewed")

    corrections = subparsers.add_parser("apply-corrections", help="Apply confirmed corrections")
    corrections.add_argument("--corrections", required=True, help="Confirmed corrections file")

    return parser


def main(argv: Optional[List[str]] = None):
    """Main entry point for clinic_reconcile."""
    parser = build_parser()
    args = parser.parse_args(argv)

    _setup_logging(args.log_level)

    try:
        pipeline = ReconciliationPipeline(args.config)

        if args.command == "analyze":
            result = pipeline.run_analysis(args.input, enrich=args.enrich)
            summary = result["summary"]
            _print_banner("RECONCILIATION ANALYSIS SUMMARY", [
                f"Source Rows: {result['total_rows']:,}",
                f"Already Linked: {result['already_linked']:,}",
                f"Analyzed: {summary['totalUnmatched']:,}",
                f"Potential Duplicates: {summary['duplicatesFound']:,}",
                f"New Clinics: {summary['newClinics']:,}",
                f"Report: {result['report_path']}",
                f"Total Duration: {result['total_duration']:.2f} seconds",
            ])

        elif args.command == "triage":
            result = pipeline.run_triage(args.report, args.output, args.threshold)
            _print_banner("REVIEW TRIAGE SUMMARY", [
                f"Below {result['threshold']}% Confidence: {result['suspicious']:,}",
                f"At or Above: {result['confident']:,}",
                f"Suggested Wrong: {result['definitely_wrong']:,}",
                f"Probably Correct: {result['probably_correct']:,}",
                f"Draft: {result['draft_path']}",
            ])

        else:
            result = pipeline.run_corrections(args.corrections)
            lines = [
                f"Corrections: {result['total']:,}",
                f"Reverted: {result['reverted']:,}",
                f"New Clinics Created: {result['created']:,}",
                f"Completed: {result['completed']:,}",
                f"Failed: {result['failed']:,}",
                f"Manual Follow-up: {result['manual_followup']:,}",
            ]
            lines += [f"  {b['source_name']}: {b['old_target_id']} -> {b['new_target_id']}"
                      for b in result["bindings"]]
            _print_banner("CORRECTION SUMMARY", lines)

    except Exception as e:
        logger.error(f"Pipeline execution failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()

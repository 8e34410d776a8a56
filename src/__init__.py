import sys
import signal
import atexit
import logging
import argparse
from typing import Any, List, Optional
from functools import partial


from rdh_app.managers.case_manager import CaseManager
from rdh_app.managers.config_manager import ConfigManager
from rdh_app.managers.dicom_manager import DicomManager
from rdh_app.managers.shared_state_manager import SharedStateManager
from rdh_app.utils.logger_utils import start_root_logger
from rdh_app.utils.rt_data_objects import RecordKind, RtCase


logger = logging.getLogger(__name__)


def signal_handler(signum: int, frame: Any, shared_state_manager: SharedStateManager) -> None:
    """Handle termination signals by stopping the background worker."""
    shared_state_manager.shutdown(wait=False)
    sys.exit(0)


def register_exit_handlers(shared_state_manager: SharedStateManager) -> None:
    """Registers cleanup functions for exit and termination signals."""
    atexit.register(partial(shared_state_manager.shutdown, wait=False))
    signal.signal(signal.SIGTERM, partial(signal_handler, shared_state_manager=shared_state_manager))
    signal.signal(signal.SIGINT, partial(signal_handler, shared_state_manager=shared_state_manager))


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Compute DVHs and isodose regions for the RT data in a DICOM folder.")
    parser.add_argument("folder", help="Folder holding the image series, RT Structure Set, RT Plan and RT Dose files.")
    parser.add_argument(
        "--force-recalculate", action="store_true",
        help="Replace DVHs stored in the RT Dose files with DVHs calculated from the dose grid."
    )
    parser.add_argument("--log-level", default=None, help="Logging level name, e.g. DEBUG or INFO.")
    parser.add_argument(
        "--log-stdout", action="store_true",
        help="Route anything printed to stdout or stderr (e.g. by third-party libraries) into the log."
    )
    return parser.parse_args(argv)


def log_case_summary(case: RtCase) -> None:
    structure_set = case.get_first_structure()
    for plan in case.plans.values():
        rx_text = f"{plan.rx_dose:.1f} cGy" if plan.rx_dose is not None else "unknown"
        logger.info(f"Plan '{plan.label or plan.sop_instance_uid}' ({plan.name}), prescribed dose {rx_text}")
        for dose in plan.doses:
            logger.info(f"  Dose '{dose.sop_instance_uid}': {len(dose.iso_dose_set)} isodose levels")
            if structure_set is None:
                continue
            for region in structure_set.regions.values():
                dvh = dose.dvhs.get(region.roi_number)
                if dvh is None:
                    continue
                logger.info(
                    f"    {region.name:<24} {region.volume:9.2f} cm3 ({dvh.source.value}) "
                    f"min {dvh.get_minimum_dose_cgy():8.1f}  mean {dvh.get_mean_dose_cgy():8.1f}  "
                    f"max {dvh.get_maximum_dose_cgy():8.1f} cGy"
                )


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    conf_mgr = ConfigManager()
    log_level = logging.getLevelName(args.log_level.upper()) if args.log_level else conf_mgr.get_log_level()
    start_root_logger(
        logger_level=log_level if isinstance(log_level, int) else logging.INFO,
        logs_dir=conf_mgr.get_logs_dir(),
        redirect_stdout=args.log_stdout,
    )

    shared_state_manager = SharedStateManager()
    register_exit_handlers(shared_state_manager)

    try:
        reference, contents = DicomManager().load_folder(args.folder)
        if reference is None:
            return 1

        case_mgr = CaseManager(conf_mgr, shared_state_manager)
        future = shared_state_manager.submit_action(
            case_mgr.compute_case,
            contents.records[RecordKind.STRUCTURE_SET],
            contents.records[RecordKind.PLAN],
            contents.records[RecordKind.DOSE],
            reference,
            force_recalculate=True if args.force_recalculate else None,
        )
        if future is None:
            return 1
        log_case_summary(future.result())
        return 0
    except Exception:
        logger.exception("Failed to compute the case!", exc_info=True, stack_info=True)
        return 1
    finally:
        shared_state_manager.shutdown()


if __name__ == "__main__":
    sys.exit(main())

"""
Maximum likelihood fitting.
"""
from __future__ import annotations

import logging
from contextlib import ExitStack
from typing import TYPE_CHECKING, Any, Optional, Union

from hepfit.fitting.minimizer import Minimizer
from hepfit.fitting.nll import NLL
from hepfit.fitting.options import FitOptions
from hepfit.fitting.result import FitResult
from hepfit.utils import Stopwatch

if TYPE_CHECKING:
    from hepfit.data import DataHist, Dataset
    from hepfit.models.pdf import Pdf

logger = logging.getLogger(__name__)

__all__ = ["FitOptions", "FitResult", "Minimizer", "NLL", "fit"]


def fit(pdf: Pdf, data: Union[Dataset, DataHist], options: Optional[FitOptions] = None, **kwargs: Any) -> FitResult:
    """
    Fit a PDF to data by minimizing the negative log-likelihood.

    The floating parameters of the PDF are left at the fitted values, with
    their errors set.

    Args:
        pdf: Model to fit.
        data: Unbinned or binned data.
        options: Fit options; keyword arguments override single fields.

    Returns:
        The fit result. Problems during the fit are reported in its status.
    """
    options = options or FitOptions()
    if kwargs:
        options = options.replace(**kwargs)

    sumw2_error = options.sumw2_error
    if sumw2_error is None and data.is_weighted:
        logger.warning(
            f"Fitting weighted dataset '{data.name}' without sumw2_error specified, "
            f"errors are corrected for the weights (pass sumw2_error=False to disable)."
        )
        sumw2_error = True

    with ExitStack() as stack:
        nll = stack.enter_context(NLL(
            pdf, data,
            extended=options.extended,
            batch_mode=options.batch_mode,
            num_cpu=options.num_cpu,
            offset=options.offset,
        ))
        sumw2_nll = None
        if sumw2_error and options.hesse:
            sumw2_nll = stack.enter_context(NLL(
                pdf, data,
                extended=options.extended,
                batch_mode=options.batch_mode,
                num_cpu=options.num_cpu,
                weight_power=2,
            ))

        minimizer = Minimizer(nll, options)
        with Stopwatch() as sw:
            result = minimizer.run(sumw2_nll)

    result.wall_time = sw.real_time
    result.cpu_time = sw.cpu_time
    logger.info(
        f"Fit of '{pdf.name}' to '{data.name}' finished with status {result.status} "
        f"in {sw.real_time:.3f} s (cpu {sw.cpu_time:.3f} s), {result.ncalls} NLL calls"
    )
    if options.print_level >= 0:
        result.print()
    return result

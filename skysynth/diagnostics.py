"""
Diagnostic tools for synthesized alms.

Compare the cross-spectra measured from synthesized coefficients with the
input spectrum tensor.
"""
import os
import logging

import numpy as np
import healpy as hp

from .alm_utils import alm_lmax

logger = logging.getLogger(__name__)

__all__ = ['empirical_cross_spectra', 'spectrum_recovery_error', 'plot_cross_spectra']


def empirical_cross_spectra(alms):
    """
    Measured cross-spectra of a set of alms.

    Parameters
    ----------
    alms : ndarray or sequence of ndarray
        ncomp alm arrays in healpy layout.

    Returns
    -------
    ndarray
        Tensor of shape (ncomp, ncomp, lmax+1) with the healpy ``alm2cl`` estimate
        for every pair of components.
    """
    ncomp = len(alms)
    lmax = alm_lmax(alms[0])
    cls = np.zeros((ncomp, ncomp, lmax + 1))
    for i in range(ncomp):
        for j in range(i, ncomp):
            cls[i, j] = hp.alm2cl(alms[i], alms[j])
            cls[j, i] = cls[i, j]
    return cls


def spectrum_recovery_error(cls, alms, lmin=2):
    """
    Per-multipole deviation of the measured spectra from the input, in units of
    the cosmic-variance standard deviation sqrt((C_ii C_jj + C_ij^2) / (2l + 1)).

    Multipoles where the expected standard deviation vanishes are returned as 0.
    """
    measured = empirical_cross_spectra(alms)
    lmax = measured.shape[2] - 1
    cls = np.asarray(cls, dtype=float)[:, :, :lmax + 1]

    diag = np.einsum('iil->il', cls)
    variance = (diag[:, None, :] * diag[None, :, :] + cls**2) / (2 * np.arange(lmax + 1) + 1)
    sigma = np.sqrt(variance)
    deviation = np.divide(measured - cls, sigma, out=np.zeros_like(measured), where=sigma > 0)
    return deviation[:, :, lmin:]


def plot_cross_spectra(cls, alms, savepath=None, show=False):
    """
    Plot input and measured cross-spectra for every pair of components.

    Parameters
    ----------
    cls : array_like
        Input tensor of shape (ncomp, ncomp, nl).
    alms : ndarray or sequence of ndarray
        Synthesized alms.
    savepath : str or None
        If provided, save the figure to this path.
    show : bool
        Whether to show the plot.

    Returns
    -------
    matplotlib.figure.Figure
    """
    import matplotlib.pyplot as plt

    measured = empirical_cross_spectra(alms)
    ncomp, _, nl = measured.shape
    ell = np.arange(nl)
    cls = np.asarray(cls, dtype=float)[:, :, :nl]

    fig, axes = plt.subplots(ncomp, ncomp, figsize=(3.5 * ncomp, 3 * ncomp), squeeze=False, sharex=True)
    for i in range(ncomp):
        for j in range(ncomp):
            ax = axes[i, j]
            if j < i:
                ax.axis('off')
                continue
            ax.plot(ell, measured[i, j], color='tab:blue', alpha=0.7, label='measured')
            ax.plot(ell, cls[i, j], color='k', ls='--', label='input')
            ax.set_title(f'C_l[{i},{j}]')
            ax.grid(True, alpha=0.3)
            if i == j == 0:
                ax.legend()
    for ax in axes[-1]:
        ax.set_xlabel('l')
    fig.tight_layout()

    if savepath is not None:
        directory = os.path.dirname(savepath)
        if directory:
            os.makedirs(directory, exist_ok=True)
        fig.savefig(savepath)
        logger.info(f"Saved cross-spectrum plot: {savepath}")
    if show:
        plt.show()
    return fig

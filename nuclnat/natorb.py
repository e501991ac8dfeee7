#!/usr/bin/env python

'''
Natural orbitals of a nuclear mean-field reference.

The MBPT(2) one-body density matrix is diagonalized block by block in the
(l, j, tz) one-body channels.  The eigenvectors define the natural basis and
the eigenvalues the natural occupation numbers.  Optionally the natural
occupations are used to build a new (fractional) reference, and the
Hamiltonian is normal ordered with respect to it in the natural basis.

Examples:

>>> from nuclnat import modelspace, operator, hf, natorb
>>> ms = modelspace.M(emax=2, Z=2, N=2)
>>> hbare = operator.Operator(ms)
>>> ... # fill hbare.one_body and hbare.two_body
>>> mf = hf.MeanField(hbare)
>>> no = natorb.NatOrb(mf).run()
>>> hno = no.get_normal_ordered_h()
'''

import numpy
import scipy.linalg
from pyscf import lib
from pyscf.lib import logger
from pyscf import __config__
from nuclnat import hf
from nuclnat import mbpt2
from nuclnat import occupations
from nuclnat import transform
from nuclnat.exceptions import MassConservationError, DiagonalizationError, BackfillError

MASS_TOL = getattr(__config__, 'nuclnat_mass_tol', 1e-8)
REORDER_MAX_CYCLE = getattr(__config__, 'nuclnat_reorder_max_cycle', 50)
KEEP_OCC_THRESHOLD = occupations.KEEP_OCC_THRESHOLD


def diagonalize_rdm1(rho, one_body_channels, max_cycle=REORDER_MAX_CYCLE,
                     verbose=logger.NOTE):
    '''Diagonalize rho in every one-body channel.

    Eigenvalues come out ascending; they are written to the channel's orbits
    in descending index order so that the lowest orbit of a channel gets the
    largest occupation.  The columns of the returned coefficients are then
    reordered and sign-fixed, see :func:`reorder_coefficients`.

    Returns:
        occ : ndarray
            Natural occupations, one per orbit
        coeff : ndarray
            Rotation from the basis of rho to the natural basis, 1st index
            in the basis of rho
    '''
    if isinstance(verbose, logger.Logger):
        log = verbose
    else:
        log = logger.Logger(lib.StreamObject.stdout, verbose)
    norb = rho.shape[0]
    occ = numpy.zeros(norb)
    coeff = numpy.eye(norb)
    for key, orbs in one_body_channels.items():
        orbs = numpy.asarray(orbs, dtype=int)
        orbs_d = orbs[::-1]
        rho_ch = rho[orbs[:,None],orbs]
        try:
            w, v = scipy.linalg.eigh(rho_ch)
        except (scipy.linalg.LinAlgError, ValueError) as err:
            log.error('Density matrix of channel (l,2j,2tz)=%s\n%s', key, rho_ch)
            raise DiagonalizationError('Diagonalization of channel %s failed: %s'
                                       % (key, err))
        occ[orbs_d] = w
        coeff[orbs[:,None],orbs_d] = v
    coeff, occ = reorder_coefficients(coeff, occ, one_body_channels, max_cycle, log)
    return occ, coeff

def reorder_coefficients(coeff, occ, one_body_channels, max_cycle=REORDER_MAX_CYCLE,
                         verbose=logger.NOTE):
    '''Permute the columns of each channel so that every natural orbital
    sits on the position of its dominant component, then make the
    diagonal elements positive.  Returns new (coeff, occ).'''
    if isinstance(verbose, logger.Logger):
        log = verbose
    else:
        log = logger.Logger(lib.StreamObject.stdout, verbose)
    coeff = numpy.array(coeff, copy=True)
    occ = numpy.array(occ, copy=True)
    for key, orbs in one_body_channels.items():
        for cycle in range(max_cycle):
            nswap = 0
            for i in orbs:
                for j in orbs:
                    if j >= i:
                        break
                    if abs(coeff[i,j]) > abs(coeff[i,i]):
                        coeff[:,[i,j]] = coeff[:,[j,i]]
                        occ[[i,j]] = occ[[j,i]]
                        nswap += 1
            if nswap == 0:
                break
        else:
            log.warn('Reordering of channel %s not settled after %d passes',
                     key, max_cycle)
        for i in orbs:
            if coeff[i,i] < 0:
                coeff[:,i] *= -1
    return coeff, occ

def check_mass(rho, modelspace, tol=MASS_TOL):
    '''Compare sum_i (2j_i+1) rho_ii with the target mass number'''
    jfac = numpy.array([o.j2+1 for o in modelspace.orbits], dtype=float)
    a_rho = numpy.dot(rho.diagonal(), jfac)
    a_target = modelspace.get_target_mass()
    if abs(a_rho - a_target) > tol:
        logger.error(modelspace, 'Tr(rho) = %.10f  A = %d', a_rho, a_target)
        raise MassConservationError('Tr(rho) = %.10f differs from A = %d'
                                    % (a_rho, a_target))
    return a_rho


class NaturalOrbitals:
    '''Result of :func:`get_natural_orbitals`

    Attributes:
        rho : ndarray
            MBPT(2) density matrix in the mean-field basis
        occ : ndarray
            Natural occupations (signed eigenvalues)
        coeff_hf2nat : ndarray
            Mean-field basis -> natural basis
        coeff_ho2nat : ndarray
            Original basis -> natural basis
        holeorbs, hole_occ : ndarray
            Reference used to normal order in the natural basis
        backfill : :class:`Backfilled` or :class:`Infeasible` or None
    '''
    def __init__(self, rho, occ, coeff_hf2nat, coeff_ho2nat, holeorbs, hole_occ,
                 backfill=None):
        self.rho = rho
        self.occ = occ
        self.coeff_hf2nat = coeff_hf2nat
        self.coeff_ho2nat = coeff_ho2nat
        self.holeorbs = holeorbs
        self.hole_occ = hole_occ
        self.backfill = backfill


def get_natural_orbitals(mf, use_nat_occupations=False,
                         keep_occ_threshold=KEEP_OCC_THRESHOLD, strict=True,
                         ham=None, verbose=None):
    '''Density matrix, natural orbitals and (optionally) the new reference.

    Args:
        mf : :class:`MeanField`

    Kwargs:
        use_nat_occupations : bool
            Build the reference from the natural occupations
        strict : bool
            Raise :class:`BackfillError` if the particle numbers cannot be
            restored.  Otherwise the mean-field reference is kept.
        ham : :class:`Operator`
            Normal-ordered Hamiltonian in the mean-field basis.  Built from
            mf if not given.

    Returns:
        :class:`NaturalOrbitals`
    '''
    log = logger.new_logger(mf, verbose)
    ms = mf.modelspace
    if ham is None:
        ham = mf.get_normal_ordered_h()
    rho = mbpt2.make_rdm1(ham, ms, log)

    cput0 = (logger.process_clock(), logger.perf_counter())
    occ, coeff_hf2nat = diagonalize_rdm1(rho, ms.one_body_channels, verbose=log)
    log.timer('diagonalization of rho', *cput0)
    check_mass(rho, ms)

    coeff_ho2nat = numpy.dot(mf.mo_coeff, coeff_hf2nat)
    for i in ms.all_orbits:
        ms.get_orbit(i).occ_nat = abs(occ[i])
    if numpy.any(occ < 0):
        log.warn('Negative natural occupations %s', occ[occ < 0])

    nat = NaturalOrbitals(rho, occ, coeff_hf2nat, coeff_ho2nat,
                          numpy.array(mf.holeorbs, copy=True),
                          numpy.array(mf.hole_occ, copy=True))
    if use_nat_occupations:
        log.note('Switching to occupation numbers obtained from the '
                 '2nd order one-body density matrix')
        result = occupations.backfill(abs(occ), ms, keep_occ_threshold, verbose=log)
        nat.backfill = result
        if not result.feasible:
            if strict:
                raise BackfillError(result.reason)
            log.warn('Mean-field reference kept')
        else:
            nat.holeorbs = result.holeorbs
            nat.hole_occ = result.hole_occ
            ms.set_reference(result.holeorbs, result.hole_occ)
    return nat

def get_normal_ordered_hnat(mf, nat, particle_rank=2, verbose=None):
    '''Hamiltonian normal ordered with respect to the reference
    (nat.holeorbs, nat.hole_occ) in the natural basis.

    The Fock matrix and the reference energy are rebuilt from the density of
    that reference; mf itself is left unchanged.
    '''
    log = logger.new_logger(mf, verbose)
    rho = hf.make_rdm1(nat.coeff_ho2nat, nat.holeorbs, nat.hole_occ)
    veff = mf.get_veff(rho)
    fock = mf.get_fock(veff=veff)
    e_tot, e1, e2, e3 = mf.energy_tot(rho, veff)
    log.note('e1Nat = %.10f  e2Nat = %.10f  e3Nat = %.10f', e1, e2, e3)
    log.note('ENat = %.10f', e_tot)
    return transform.get_normal_ordered_h(mf.hbare, nat.coeff_ho2nat, fock, e_tot,
                                          rho, particle_rank,
                                          max_workers=mf.max_workers, verbose=log)


class NatOrb(lib.StreamObject):
    '''Natural orbitals from the MBPT(2) density matrix

    Attributes:
        use_nat_occupations : bool
            Replace the mean-field reference by the back-filled natural
            occupations.  Default is False.
        keep_occ_threshold : float
            Natural orbitals with a larger occupation are kept in the new
            reference.  Default is 0.02.
        strict : bool
            Raise if back-fill cannot restore Z and N.  Default is True.

    Saved results

        nat : :class:`NaturalOrbitals`

    After a back-fill the model space holds the new reference while mf keeps
    the mean-field one, whose hole orbits refer to the mean-field basis.
    Use make_rdm1/get_fock of this object for quantities of the new reference.
    '''
    keep_occ_threshold = KEEP_OCC_THRESHOLD

    def __init__(self, mf):
        self.mf = mf
        self.modelspace = mf.modelspace
        self.verbose = mf.verbose
        self.stdout = mf.stdout
        self.use_nat_occupations = False
        self.strict = True

##################################################
# don't modify the following attributes, they are not input options
        self.nat = None
        self._keys = set(self.__dict__.keys())

    @property
    def occ(self):
        return None if self.nat is None else self.nat.occ

    @property
    def coeff_hf2nat(self):
        if self.nat is None:
            return numpy.eye(self.modelspace.norbits)
        return self.nat.coeff_hf2nat

    @property
    def coeff_ho2nat(self):
        if self.nat is None:
            return self.mf.mo_coeff
        return self.nat.coeff_ho2nat

    def dump_flags(self, verbose=None):
        log = logger.new_logger(self, verbose)
        log.info('')
        log.info('******** %s ********', self.__class__)
        log.info('use_nat_occupations = %s', self.use_nat_occupations)
        log.info('keep_occ_threshold = %g', self.keep_occ_threshold)
        log.info('strict = %s', self.strict)
        return self

    def kernel(self, ham=None):
        cput0 = (logger.process_clock(), logger.perf_counter())
        self.dump_flags()
        self.nat = get_natural_orbitals(self.mf, self.use_nat_occupations,
                                        self.keep_occ_threshold, self.strict,
                                        ham=ham, verbose=self.verbose)
        if self.verbose >= logger.INFO:
            self.dump_occupation()
        logger.timer(self, 'natural orbitals', *cput0)
        return self.nat.occ, self.nat.coeff_ho2nat

    def make_rdm1(self):
        '''Density matrix, in the original basis, of the reference the
        Hamiltonian is normal ordered to in the natural basis'''
        if self.nat is None:
            return self.mf.make_rdm1()
        return hf.make_rdm1(self.nat.coeff_ho2nat, self.nat.holeorbs, self.nat.hole_occ)

    def get_fock(self, rho=None):
        if rho is None:
            rho = self.make_rdm1()
        return self.mf.get_fock(rho)

    def get_normal_ordered_h(self, particle_rank=2):
        if self.nat is None:
            self.kernel()
        return get_normal_ordered_hnat(self.mf, self.nat, particle_rank, self.verbose)

    def transform_hf_to_nat(self, op, with_three_body=False):
        '''Operator in the mean-field basis -> natural basis'''
        return transform.transform_operator(op, self.coeff_hf2nat, with_three_body)

    def transform_ho_to_nat(self, op, with_three_body=False):
        '''Operator in the original basis -> natural basis'''
        return transform.transform_operator(op, self.coeff_ho2nat, with_three_body)

    def dump_occupation(self, verbose=None):
        log = logger.new_logger(self, verbose)
        log.info('   n   l  2j 2tz   occ_nat')
        for o in self.modelspace.orbits:
            log.info('%4d%4d%4d%4d   %.8f', o.n, o.l, o.j2, o.tz2, o.occ_nat)
        return self

    def dump_spe_and_wf(self, verbose=None):
        '''Single-particle energies in the natural basis and the expansion of
        each natural orbital on the original basis'''
        log = logger.new_logger(self, verbose)
        ms = self.modelspace
        c = self.coeff_ho2nat
        fock = self.get_fock()
        f_nat = transform.transform_one_body(fock, c)
        log.info('%3s: %3s %3s %3s %3s   %12s %12s %12s   |   overlaps',
                 'i', 'n', 'l', '2j', '2tz', 'SPE', 'occ.', 'n(1-n)')
        for o in ms.orbits:
            i = o.index
            overlaps = '  '.join('%9.6f' % c[i,j] for j in ms.get_one_body_channel(i))
            log.info('%3d: %3d %3d %3d %3d   %12.6f %12.6f %12.6f   | %s',
                     i, o.n, o.l, o.j2, o.tz2, f_nat[i,i], o.occ,
                     o.occ_nat*(1-o.occ_nat), overlaps)
        return self


if __name__ == '__main__':
    from nuclnat import modelspace
    from nuclnat import operator
    ms = modelspace.M(emax=2, Z=2, N=2, verbose=logger.INFO)
    hbare = operator.Operator(ms)
    numpy.random.seed(1)
    for i in ms.all_orbits:
        hbare.one_body[i,i] = 10. * (ms.get_orbit(i).e2 + 1.5)
    for ch, tbc in enumerate(ms.two_body_channels):
        v = numpy.random.random((tbc.nkets, tbc.nkets)) - .5
        hbare.two_body.set_matrix(ch, ch, .5 * (v + v.T))

    mf = hf.MeanField(hbare)
    print('E(HF) =', mf.energy_tot()[0])
    no = NatOrb(mf).run()
    no.dump_spe_and_wf()
    hno = no.get_normal_ordered_h()
    print('E(NAT) =', hno.zero_body)

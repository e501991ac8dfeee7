#!/usr/bin/env python

'''
Second-order one-body density matrix of a normal-ordered Hamiltonian.

The density matrix is the sum of the reference occupation and three MBPT(2)
corrections, the particle-particle (PP), hole-hole (HH) and particle-hole
(PH) blocks.  The PP and HH diagrams are regularized with the closed form of
two-level mixing, so that they stay finite for vanishing energy gaps.  The
PH block keeps the plain perturbative ratio.

Occupations of the reference can be fractional; an orbit then appears both
as a hole and as a particle, weighted with n and 1-n respectively.
'''

import numpy
from pyscf import lib
from pyscf.lib import logger
from pyscf import __config__
from nuclnat.modelspace import OCC_CUT

DENOMINATOR_CUT = getattr(__config__, 'nuclnat_denominator_cut', 1e-8)


def _level_mixing(tbme, denom):
    '''Mixing amplitude of a two-level system with coupling^2 = tbme and
    gap^2 = |denom|.  Reduces to tbme/|denom| for small couplings and stays
    below 1/2 for large ones.'''
    eps2 = .25 * abs(denom)
    eps = numpy.sqrt(eps2)
    x = numpy.sqrt(abs(tbme) + eps2)
    return numpy.sign(tbme) * .5 * (x - eps) / x

def _jrange(*pairs):
    '''Range of J allowed by all (j2, j2') couplings'''
    jmin = max(abs(ja-jb) for ja, jb in pairs) // 2
    jmax = min(ja+jb for ja, jb in pairs) // 2
    return range(jmin, jmax+1)

def make_rdm1_pp(ham, modelspace, rho, verbose=None):
    r'''Particle-particle block

    rho_ab = 1/2(2j_a+1) \sum_{cij,J} (2J+1) <ac|V|ij>_J <ij|V|bc>_J / (e_acij e_bcij)
    '''
    log = logger.new_logger(modelspace, verbose)
    ms = modelspace
    e = ham.one_body.diagonal()
    holes = ms.holes
    particles = ms.particles
    nskip = 0
    for a in ms.all_orbits:
        oa = ms.get_orbit(a)
        if 1 - oa.occ < OCC_CUT:
            continue
        for b in ms.get_one_body_channel(a):
            if b > a:
                continue
            ob = ms.get_orbit(b)
            if 1 - ob.occ < OCC_CUT:
                continue
            r = 0.
            for c in particles:
                oc = ms.get_orbit(c)
                for i in holes:
                    oi = ms.get_orbit(i)
                    for j in holes:
                        oj = ms.get_orbit(j)
                        e_acij = e[a] + e[c] - e[i] - e[j]
                        e_bcij = e[b] + e[c] - e[i] - e[j]
                        denom = e_acij * e_bcij
                        if abs(denom) < DENOMINATOR_CUT:
                            nskip += 1
                            continue
                        tbme = 0.
                        for J in _jrange((oa.j2, oc.j2), (oi.j2, oj.j2), (ob.j2, oc.j2)):
                            tbme += ((2*J+1) * ham.get_tbme_j(J, a, c, i, j)
                                     * ham.get_tbme_j(J, i, j, b, c))
                        if tbme == 0:
                            continue
                        tbme *= ((1-oa.occ) * (1-ob.occ)
                                 * ((1-oc.occ) * oi.occ * oj.occ)**2)
                        r += _level_mixing(tbme, denom)
            r *= .5 / (oa.j2+1)
            rho[a,b] += r
            if b != a:
                rho[b,a] += r
    if nskip:
        log.debug('PP block: %d terms with vanishing denominator skipped', nskip)
    return rho

def make_rdm1_hh(ham, modelspace, rho, verbose=None):
    r'''Hole-hole block, including the reference occupation on the diagonal

    rho_ij = n_i delta_ij
             - 1/2(2j_i+1) \sum_{abk,J} (2J+1) <ab|V|ik>_J <jk|V|ab>_J / (e_abik e_abjk)
    '''
    log = logger.new_logger(modelspace, verbose)
    ms = modelspace
    e = ham.one_body.diagonal()
    holes = ms.holes
    particles = ms.particles
    nskip = 0
    for i in holes:
        oi = ms.get_orbit(i)
        for j in ms.get_one_body_channel(i):
            if j > i:
                continue
            oj = ms.get_orbit(j)
            if oj.occ < OCC_CUT:
                continue
            r = 0.
            for a in particles:
                oa = ms.get_orbit(a)
                for b in particles:
                    ob = ms.get_orbit(b)
                    for k in holes:
                        ok = ms.get_orbit(k)
                        e_abik = e[a] + e[b] - e[i] - e[k]
                        e_abjk = e[a] + e[b] - e[j] - e[k]
                        denom = e_abik * e_abjk
                        if abs(denom) < DENOMINATOR_CUT:
                            nskip += 1
                            continue
                        tbme = 0.
                        for J in _jrange((oa.j2, ob.j2), (oi.j2, ok.j2), (oj.j2, ok.j2)):
                            tbme += ((2*J+1) * ham.get_tbme_j(J, a, b, i, k)
                                     * ham.get_tbme_j(J, j, k, a, b))
                        if tbme == 0:
                            continue
                        tbme *= (((1-oa.occ) * (1-ob.occ) * ok.occ)**2
                                 * oi.occ * oj.occ)
                        r += _level_mixing(tbme, denom)
            r *= -.5 / (oi.j2+1)
            rho[i,j] += r
            if j != i:
                rho[j,i] += r
        rho[i,i] += oi.occ
    if nskip:
        log.debug('HH block: %d terms with vanishing denominator skipped', nskip)
    return rho

def make_rdm1_ph(ham, modelspace, rho, verbose=None):
    '''Particle-hole block from the two diagrams with one external line on
    a two-body vertex.  Not regularized.'''
    ms = modelspace
    e = ham.one_body.diagonal()
    holes = ms.holes
    particles = ms.particles
    for i in holes:
        oi = ms.get_orbit(i)
        for a in ms.get_one_body_channel(i):
            oa = ms.get_orbit(a)
            if 1 - oa.occ < OCC_CUT:
                continue
            e_ai = e[a] - e[i]
            r = 0.
            for b in particles:
                ob = ms.get_orbit(b)
                for c in particles:
                    oc = ms.get_orbit(c)
                    for j in holes:
                        oj = ms.get_orbit(j)
                        e_bcij = e[b] + e[c] - e[i] - e[j]
                        denom = e_ai * e_bcij
                        if denom < DENOMINATOR_CUT:
                            continue
                        tbme = 0.
                        for J in _jrange((oa.j2, oj.j2), (ob.j2, oc.j2), (oi.j2, oj.j2)):
                            tbme += ((2*J+1) * ham.get_tbme_j(J, a, j, b, c)
                                     * ham.get_tbme_j(J, b, c, i, j))
                        tbme *= (1-oa.occ) * (1-ob.occ) * (1-oc.occ) * oi.occ * oj.occ
                        r += tbme / denom
            r *= .5 / (oa.j2+1)
            rho[a,i] += r
            rho[i,a] += r

            r = 0.
            for b in particles:
                ob = ms.get_orbit(b)
                for j in holes:
                    oj = ms.get_orbit(j)
                    for k in holes:
                        ok = ms.get_orbit(k)
                        e_abkj = e[a] + e[b] - e[k] - e[j]
                        denom = e_ai * e_abkj
                        if denom < DENOMINATOR_CUT:
                            continue
                        tbme = 0.
                        for J in _jrange((ok.j2, oj.j2), (oi.j2, ob.j2), (oa.j2, ob.j2)):
                            tbme += ((2*J+1) * ham.get_tbme_j(J, k, j, i, b)
                                     * ham.get_tbme_j(J, a, b, k, j))
                        tbme *= (1-oa.occ) * oi.occ * oj.occ * ok.occ * (1-ob.occ)
                        r += tbme / denom
            r *= .5 / (oa.j2+1)
            rho[a,i] -= r
            rho[i,a] -= r
    return rho

def make_rdm1(ham, modelspace, verbose=None):
    '''Second-order one-body density matrix in the basis of ham.

    Args:
        ham : :class:`Operator`
            Normal-ordered Hamiltonian.  Only the diagonal of the one-body
            part (the single-particle energies) and the two-body part are
            used.
        modelspace : :class:`ModelSpace`
            Supplies the reference occupations and hole/particle lists.

    Returns:
        rho : ndarray (norbits, norbits), symmetric and block diagonal in
        the one-body channels.
    '''
    log = logger.new_logger(modelspace, verbose)
    cput0 = cput1 = (logger.process_clock(), logger.perf_counter())
    rho = numpy.zeros((modelspace.norbits, modelspace.norbits))
    make_rdm1_pp(ham, modelspace, rho, log)
    cput1 = log.timer_debug1('PP block', *cput1)
    make_rdm1_hh(ham, modelspace, rho, log)
    cput1 = log.timer_debug1('HH block', *cput1)
    make_rdm1_ph(ham, modelspace, rho, log)
    log.timer_debug1('PH block', *cput1)
    log.timer('MBPT2 density matrix', *cput0)
    return rho


class MBPT2Density(lib.StreamObject):
    '''Second-order density matrix of a mean-field reference

    Attributes:
        rdm1 : ndarray
            Density matrix in the mean-field basis after kernel()
    '''
    def __init__(self, mf):
        self.mf = mf
        self.modelspace = mf.modelspace
        self.verbose = mf.verbose
        self.stdout = mf.stdout

##################################################
# don't modify the following attributes, they are not input options
        self.rdm1 = None
        self._keys = set(self.__dict__.keys())

    def kernel(self, ham=None):
        if ham is None:
            ham = self.mf.get_normal_ordered_h()
        self.rdm1 = make_rdm1(ham, self.modelspace, self.verbose)
        jfac = numpy.array([o.j2+1 for o in self.modelspace.orbits])
        logger.info(self, 'Tr(rho) = %.10f', numpy.dot(self.rdm1.diagonal(), jfac))
        return self.rdm1

    make_rdm1 = kernel

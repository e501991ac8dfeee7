#!/usr/bin/env python

'''
Single-particle basis transformation of many-body operators.

coeff is always the rotation from the old basis to the new basis, with the
1st index in the old basis.  It must be orthogonal inside every one-body
channel and must not couple different channels.
'''

import itertools
from functools import reduce
from concurrent.futures import ThreadPoolExecutor
import numpy
from threadpoolctl import threadpool_limits
from pyscf import lib
from pyscf.lib import logger
from pyscf import __config__
from nuclnat.operator import Operator, TwoBodyME, ThreeBodyME, SQRT2

TRANSFORM_3B_CUTOFF = getattr(__config__, 'nuclnat_transform_3b_cutoff', 1e-8)


def transform_one_body(h1, coeff):
    return reduce(numpy.dot, (coeff.T, h1, coeff))

def make_ket_transform(tbc, coeff):
    '''Overlaps D[i,j] = <i(old)|j(new)> between the normalized
    antisymmetrized kets of a two-body channel.'''
    p = numpy.array([ket.p for ket in tbc.kets], dtype=int)
    q = numpy.array([ket.q for ket in tbc.kets], dtype=int)
    phase = numpy.array([ket.phase(tbc.J) for ket in tbc.kets])
    same = p == q

    d = coeff[p[:,None],p] * coeff[q[:,None],q]
    exch = coeff[q[:,None],p] * coeff[p[:,None],q] * phase[:,None]
    d[~same] += exch[~same]
    d[same] *= SQRT2
    d[:,same] /= SQRT2
    return d

def transform_two_body(two_body, coeff):
    '''Transform every (bra, ket) channel block: Dbra^T V Dket'''
    ms = two_body.modelspace
    out = TwoBodyME(ms)
    for (ch_bra, ch_ket), mat in two_body.mat.items():
        dket = make_ket_transform(ms.get_two_body_channel(ch_ket), coeff)
        if ch_bra == ch_ket:
            dbra = dket
        else:
            dbra = make_ket_transform(ms.get_two_body_channel(ch_bra), coeff)
        out.set_matrix(ch_bra, ch_ket, reduce(numpy.dot, (dbra.T, mat, dket)))
    return out

def transform_operator(op, coeff, with_three_body=False, verbose=None):
    '''Return a new operator with the one- and two-body parts expressed in
    the rotated basis.  The three-body part is only carried over (and
    transformed) when with_three_body is set.'''
    log = logger.new_logger(op.modelspace, verbose)
    new = Operator(op.modelspace, particle_rank=op.particle_rank, e3max=op.e3max)
    new.zero_body = op.zero_body
    new.one_body = transform_one_body(op.one_body, coeff)
    new.two_body = transform_two_body(op.two_body, coeff)
    if with_three_body and op.three_body is not None:
        new.three_body = transform_three_body(op.three_body, coeff, op.modelspace,
                                              verbose=log)
    elif op.three_body is not None:
        log.debug('Three-body part dropped in basis transformation')
        new.three_body = None
        new.particle_rank = min(op.particle_rank, 2)
    return new

def get_v3no2b_matrix(hbare, tbc, rho, max_workers=None):
    '''Residual two-body interaction of a three-body force in channel tbc,
    obtained by contracting one spectator orbit with the density matrix rho
    (original basis).  Only the upper triangle is evaluated, one task per
    bra, then mirrored.'''
    ms = hbare.modelspace
    J = tbc.J
    nkets = tbc.nkets
    e3max = hbare.e3max
    v3no = numpy.zeros((nkets, nkets))
    if max_workers is None:
        max_workers = lib.num_threads()

    # spectator pairs (a,b) with non-zero density
    spectators = [(a, b) for a in ms.all_orbits for b in ms.get_one_body_channel(a)
                  if rho[a,b] != 0]
    spec_a = numpy.array([a for a, b in spectators], dtype=int)
    spec_b = numpy.array([b for a, b in spectators], dtype=int)
    e2 = numpy.array([o.e2 for o in ms.orbits])
    rho_ab = rho[spec_a,spec_b]
    e2kets = numpy.array([ket.op.e2 + ket.oq.e2 for ket in tbc.kets])
    norm = numpy.array([SQRT2 if ket.p == ket.q else 1. for ket in tbc.kets])

    def fill_row(i):
        bra = tbc.get_ket(i)
        sel = numpy.nonzero(e2[spec_a] + e2kets[i] <= e3max)[0]
        e2b = e2[spec_b[sel]]
        v3 = numpy.zeros((nkets-i, len(sel)))
        for k, ket in enumerate(tbc.kets[i:]):
            for s in numpy.nonzero(e2b + e2kets[i+k] <= e3max)[0]:
                x = sel[s]
                v3[k,s] = hbare.get_v3no2b(bra.p, bra.q, spec_a[x],
                                           ket.p, ket.q, spec_b[x], J)
        v3no[i,i:] = numpy.dot(v3, rho_ab[sel]) / ((2*J+1) * norm[i] * norm[i:])

    if max_workers > 1 and nkets > 1:
        with threadpool_limits(limits=1), ThreadPoolExecutor(max_workers=max_workers) as executor:
            list(executor.map(fill_row, range(nkets)))
    else:
        for i in range(nkets):
            fill_row(i)

    iu = numpy.triu_indices(nkets, 1)
    v3no[iu[1],iu[0]] = v3no[iu]
    return v3no

def get_transformed_3bme(op3, coeff, modelspace, Jab, Jde, J2, a, b, c, d, e, f,
                         cutoff=TRANSFORM_3B_CUTOFF):
    '''A single three-body element in the new basis.

    Sums over all old-basis orbits of the matching one-body channels.  This
    scales as (channel size)^6 per element.
    '''
    factors = []
    for x in (a, b, c, d, e, f):
        members = [(y, coeff[y,x]) for y in modelspace.get_one_body_channel(x)
                   if abs(coeff[y,x]) >= cutoff]
        if not members:
            return 0.
        factors.append(members)

    v = 0.
    for terms in itertools.product(*factors):
        orbs = [t[0] for t in terms]
        v_old = op3.get_me_pn(Jab, Jde, J2, *orbs)
        if v_old == 0:
            continue
        v += v_old * numpy.prod([t[1] for t in terms])
    return v

def transform_three_body(op3, coeff, modelspace, cutoff=TRANSFORM_3B_CUTOFF,
                         verbose=None):
    '''Transform every three-body element reachable from the stored ones
    through the one-body channels.'''
    log = logger.new_logger(modelspace, verbose)
    cput0 = (logger.process_clock(), logger.perf_counter())
    targets = set()
    for key in op3.keys():
        blocks = [modelspace.get_one_body_channel(x) for x in key[3:]]
        for orbs in itertools.product(*blocks):
            targets.add(key[:3] + orbs)

    out = ThreeBodyME(modelspace)
    for key in sorted(targets):
        if key in out.elements:
            continue
        v = get_transformed_3bme(op3, coeff, modelspace, *key, cutoff=cutoff)
        if v != 0:
            out.set_me_pn(*key, v)
    log.debug('%d three-body elements transformed', len(out))
    log.timer('three-body transformation', *cput0)
    return out

def get_normal_ordered_h(hbare, coeff, fock, e_tot, rho, particle_rank=2,
                         max_workers=None, verbose=None):
    '''Normal-ordered Hamiltonian in the basis defined by coeff.

    Args:
        hbare : :class:`Operator`
            Bare Hamiltonian in the original basis
        coeff : ndarray
            Original basis -> new basis
        fock : ndarray
            Fock matrix in the original basis
        e_tot : float
            Reference energy, the new zero-body part
        rho : ndarray
            Reference density matrix in the original basis, used to fold the
            three-body force into the two-body part

    The three-body part of the result is only built when particle_rank > 2.
    '''
    log = logger.new_logger(hbare.modelspace, verbose)
    cput0 = (logger.process_clock(), logger.perf_counter())
    ms = hbare.modelspace
    hno = Operator(ms, particle_rank=particle_rank, e3max=hbare.e3max)
    hno.zero_body = e_tot
    hno.one_body = transform_one_body(fock, coeff)

    with_3n = hbare.has_three_body_force
    for ch, tbc in enumerate(ms.two_body_channels):
        d = make_ket_transform(tbc, coeff)
        v2 = hbare.two_body.get_matrix(ch)
        if with_3n:
            v2 = v2 + get_v3no2b_matrix(hbare, tbc, rho, max_workers)
        hno.two_body.set_matrix(ch, ch, reduce(numpy.dot, (d.T, v2, d)))
    if with_3n:
        log.timer_debug1('NO2B residual of the three-body force', *cput0)

    if particle_rank > 2:
        if hbare.three_body is not None:
            hno.three_body = transform_three_body(hbare.three_body, coeff, ms,
                                                  verbose=log)
        else:
            log.warn('Three-body part requested but the bare Hamiltonian has none')
    log.timer('normal-ordered H', *cput0)
    return hno

#!/usr/bin/env python

'''
Reference occupations from natural occupation numbers.

Orbits whose natural occupation exceeds a threshold are kept as holes; the
occupations are then back-filled in small aliquots until the proton and
neutron numbers of the reference are restored.
'''

from dataclasses import dataclass
import numpy
from pyscf.lib import logger
from pyscf import __config__
from nuclnat.modelspace import OCC_CUT

KEEP_OCC_THRESHOLD = getattr(__config__, 'nuclnat_keep_occ_threshold', 0.02)
BACKFILL_ALIQUOT = getattr(__config__, 'nuclnat_backfill_aliquot', 0.005)
BACKFILL_MAX_CYCLE = getattr(__config__, 'nuclnat_backfill_max_cycle', 100000)


@dataclass(eq=False)
class Backfilled:
    '''New hole orbits and their occupations; particle numbers restored'''
    holeorbs: numpy.ndarray
    hole_occ: numpy.ndarray

    feasible = True


@dataclass(eq=False)
class Infeasible:
    '''Back-fill stopped before the particle numbers were restored.
    holeorbs/hole_occ hold the partial result.'''
    reason: str
    holeorbs: numpy.ndarray
    hole_occ: numpy.ndarray

    feasible = False


def backfill(occ, modelspace, keep_occ_threshold=KEEP_OCC_THRESHOLD,
             aliquot=BACKFILL_ALIQUOT, tol=OCC_CUT, max_cycle=BACKFILL_MAX_CYCLE,
             verbose=None):
    '''Select orbits with occ > keep_occ_threshold and raise their
    occupations until Z and N of the model space are reached.

    Kept occupations above 1 are first clipped to 1.  A species whose kept
    orbits already hold more than its target cannot be back-filled.

    Each pass goes over the kept orbits of one species in index order and
    adds min(aliquot, deficit/(2j+1), 1-occ) to every orbit.  Protons are
    filled before neutrons; the two never share an increment.

    Returns:
        :class:`Backfilled` or :class:`Infeasible`
    '''
    log = logger.new_logger(modelspace, verbose)
    ms = modelspace
    occ = numpy.asarray(occ)
    holeorbs = [i for i in ms.all_orbits if occ[i] > keep_occ_threshold]
    hole_occ = numpy.array([occ[i] for i in holeorbs], dtype=float)
    holeorbs = numpy.array(holeorbs, dtype=int)
    over = hole_occ > 1
    if numpy.any(over):
        log.warn('Natural occupations %s of orbits %s clipped to 1',
                 hole_occ[over], holeorbs[over])
        hole_occ[over] = 1.
    log.debug('%d orbits kept with natural occupation > %g',
              len(holeorbs), keep_occ_threshold)

    for tz2, target, label in ((-1, ms.get_zref(), 'proton'),
                               (1, ms.get_nref(), 'neutron')):
        members = [k for k, i in enumerate(holeorbs) if ms.get_orbit(i).tz2 == tz2]
        degen = numpy.array([ms.get_orbit(holeorbs[k]).j2+1 for k in members])
        count = numpy.dot(hole_occ[members], degen) if members else 0.
        log.debug('%s number before back-fill %.8f, target %d', label, count, target)
        if count - target > tol:
            reason = ('%s orbits hold %.8f particles, more than %d'
                      % (label, count, target))
            log.warn(reason)
            return Infeasible(reason, holeorbs, hole_occ)

        cycle = 0
        while target - count > tol:
            if cycle >= max_cycle:
                reason = ('%s back-fill not converged in %d passes, %.3e missing'
                          % (label, max_cycle, target - count))
                log.warn(reason)
                return Infeasible(reason, holeorbs, hole_occ)
            added = 0.
            for k, deg in zip(members, degen):
                inc = min(aliquot, (target-count)/deg, 1-hole_occ[k])
                if inc <= 0:
                    continue
                hole_occ[k] += inc
                count += inc * deg
                added += inc
                if target - count < tol:
                    break
            if added == 0:
                reason = ('%s orbits saturated, %.3e missing'
                          % (label, target - count))
                log.warn(reason)
                return Infeasible(reason, holeorbs, hole_occ)
            cycle += 1
        log.debug('%s number after %d back-fill passes %.8f', label, cycle, count)

    return Backfilled(holeorbs, hole_occ)

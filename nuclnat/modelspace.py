#!/usr/bin/env python

'''
Single-particle orbits, one-body symmetry blocks and J-coupled two-body
channels of a spherical nuclear model space.

Isospin convention: tz2 = -1 for protons, tz2 = +1 for neutrons.
'''

import sys
import numpy
from pyscf import lib
from pyscf.lib import logger
from pyscf import __config__

OCC_CUT = getattr(__config__, 'nuclnat_occ_cut', 1e-6)


def M(**kwargs):
    r'''Shortcut to build a harmonic-oscillator ModelSpace.

    Examples:

    >>> from nuclnat import modelspace
    >>> ms = modelspace.M(emax=2, Z=2, N=2)
    >>> ms.norbits
    12
    '''
    emax = kwargs.pop('emax')
    Z = kwargs.pop('Z')
    N = kwargs.pop('N')
    orbits = build_oscillator_orbits(emax)
    naive_filling(orbits, Z, N)
    return ModelSpace(orbits, **kwargs)

def build_oscillator_orbits(emax):
    '''All oscillator orbits with 2n+l <= emax, protons and neutrons
    interleaved.'''
    orbits = []
    for e in range(emax+1):
        for l in range(e, -1, -2):
            n = (e - l) // 2
            for j2 in (2*l+1, 2*l-1):
                if j2 < 0:
                    continue
                for tz2 in (-1, 1):
                    orbits.append(Orbit(len(orbits), n, l, j2, tz2))
    return orbits

def naive_filling(orbits, Z, N):
    '''Fill the orbits in the given order, protons and neutrons separately.
    The last open orbit of each species is fractionally occupied.'''
    left = {-1: Z, 1: N}
    for o in orbits:
        deg = o.j2 + 1
        fill = min(deg, left[o.tz2])
        o.occ = fill / deg
        left[o.tz2] -= fill
    if left[-1] > 0 or left[1] > 0:
        raise ValueError('Model space too small for Z=%s N=%s' % (Z, N))
    return orbits


class Orbit:
    def __init__(self, index, n, l, j2, tz2, occ=0.):
        self.index = index
        self.n = n
        self.l = l
        self.j2 = j2
        self.tz2 = tz2
        self.occ = occ
        self.occ_nat = occ

    @property
    def e2(self):
        '''Oscillator energy label 2n+l'''
        return 2*self.n + self.l

    @property
    def parity(self):
        return self.l % 2

    def __repr__(self):
        return ('Orbit(%d: n=%d l=%d j2=%d tz2=%d occ=%.6f)' %
                (self.index, self.n, self.l, self.j2, self.tz2, self.occ))


class Ket:
    '''Two-body state |pq> with p <= q'''
    def __init__(self, op, oq):
        assert op.index <= oq.index
        self.op = op
        self.oq = oq
        self.p = op.index
        self.q = oq.index

    def phase(self, J):
        '''Phase of |qp;J> relative to |pq;J>'''
        exponent = (self.op.j2 + self.oq.j2) // 2 + J + 1
        return 1 - 2*(exponent % 2)


class TwoBodyChannel:
    def __init__(self, J, parity, tz, orbits):
        self.J = J
        self.parity = parity
        self.tz = tz
        self.kets = []
        self._index = {}
        for op in orbits:
            for oq in orbits[op.index:]:
                if self._check_ket(op, oq):
                    self._index[(op.index, oq.index)] = len(self.kets)
                    self.kets.append(Ket(op, oq))

    def _check_ket(self, op, oq):
        if (op.l + oq.l) % 2 != self.parity:
            return False
        if op.tz2 + oq.tz2 != 2*self.tz:
            return False
        if abs(op.j2 - oq.j2) > 2*self.J or op.j2 + oq.j2 < 2*self.J:
            return False
        # |pp;J> vanishes for odd J
        if op.index == oq.index and self.J % 2 == 1:
            return False
        return True

    @property
    def nkets(self):
        return len(self.kets)

    def get_ket(self, i):
        return self.kets[i]

    def get_local_index(self, p, q):
        '''Index of the ket (min(p,q), max(p,q)), or None'''
        if p > q:
            p, q = q, p
        return self._index.get((p, q))


class ModelSpace(lib.StreamObject):
    '''Orbit registry.

    Attributes:
        orbits : list of :class:`Orbit`
        one_body_channels : dict
            (l, j2, tz2) -> sorted tuple of orbit indices. Density matrices
            and basis rotations never couple different keys.
        two_body_channels : list of :class:`TwoBodyChannel`
    '''
    def __init__(self, orbits, A=None, Z=None, verbose=logger.NOTE,
                 stdout=sys.stdout):
        self.verbose = verbose
        self.stdout = stdout
        self.orbits = list(orbits)
        for i, o in enumerate(self.orbits):
            if o.index != i:
                raise ValueError('Orbit %s stored at position %d' % (o, i))

        blocks = {}
        for o in self.orbits:
            blocks.setdefault((o.l, o.j2, o.tz2), []).append(o.index)
        self.one_body_channels = {k: tuple(sorted(v)) for k, v in blocks.items()}

        jmax = max(o.j2 for o in self.orbits)
        self.two_body_channels = []
        self._tbc_index = {}
        for J in range(jmax+1):
            for parity in (0, 1):
                for tz in (-1, 0, 1):
                    tbc = TwoBodyChannel(J, parity, tz, self.orbits)
                    if tbc.nkets > 0:
                        self._tbc_index[(J, parity, tz)] = len(self.two_body_channels)
                        self.two_body_channels.append(tbc)

        if Z is None:
            Z = sum(o.occ*(o.j2+1) for o in self.orbits if o.tz2 < 0)
            Z = int(round(Z))
        if A is None:
            A = int(round(sum(o.occ*(o.j2+1) for o in self.orbits)))
        self.target_mass = A
        self.target_z = Z
        self._classify()
        self._keys = set(self.__dict__.keys())

    def _classify(self):
        self.holes = [o.index for o in self.orbits if o.occ > OCC_CUT]
        self.particles = [o.index for o in self.orbits if 1 - o.occ > OCC_CUT]

    @property
    def norbits(self):
        return len(self.orbits)

    @property
    def all_orbits(self):
        return range(len(self.orbits))

    @property
    def nchannels(self):
        return len(self.two_body_channels)

    def get_orbit(self, i):
        return self.orbits[i]

    def get_target_mass(self):
        return self.target_mass

    def get_zref(self):
        return self.target_z

    def get_nref(self):
        return self.target_mass - self.target_z

    def get_one_body_channel(self, i):
        o = self.orbits[i]
        return self.one_body_channels[(o.l, o.j2, o.tz2)]

    def get_two_body_channel(self, ch):
        return self.two_body_channels[ch]

    def get_two_body_channel_index(self, J, parity, tz):
        return self._tbc_index.get((J, parity, tz))

    def get_occupations(self):
        return numpy.array([o.occ for o in self.orbits])

    def set_reference(self, holeorbs, hole_occ):
        '''Reset the reference occupations and reclassify holes/particles.
        Orbits not in holeorbs become empty.'''
        for o in self.orbits:
            o.occ = 0.
        for i, occ in zip(holeorbs, hole_occ):
            self.orbits[i].occ = occ
        self._classify()
        logger.debug(self, 'New reference holes %s', self.holes)
        return self

    def dump_flags(self, verbose=None):
        log = logger.new_logger(self, verbose)
        log.info('******** %s ********', self.__class__)
        log.info('norbits = %d  A = %d  Z = %d', self.norbits,
                 self.target_mass, self.target_z)
        log.info('one-body channels = %d  two-body channels = %d',
                 len(self.one_body_channels), self.nchannels)
        for o in self.orbits:
            log.debug('%3d: n=%d l=%d j2=%d tz2=%2d occ=%.6f',
                      o.index, o.n, o.l, o.j2, o.tz2, o.occ)
        return self

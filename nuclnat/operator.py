#!/usr/bin/env python

'''
Scalar many-body operators in a J-coupled spherical basis.

Two-body matrices are stored per channel pair and hold normalized
antisymmetrized elements, i.e. kets |pp;J> carry the 1/sqrt(2) of the
normalized state.  get_tbme_j returns the unnormalized element which is
what enters the MBPT diagrams.
'''

import copy
import numpy
from pyscf.lib import logger

SQRT2 = numpy.sqrt(2.)


class TwoBodyME:
    def __init__(self, modelspace):
        self.modelspace = modelspace
        self.mat = {}
        for ch, tbc in enumerate(modelspace.two_body_channels):
            self.mat[(ch, ch)] = numpy.zeros((tbc.nkets, tbc.nkets))

    def get_matrix(self, ch_bra, ch_ket=None):
        if ch_ket is None:
            ch_ket = ch_bra
        return self.mat[(ch_bra, ch_ket)]

    def set_matrix(self, ch_bra, ch_ket, m):
        self.mat[(ch_bra, ch_ket)] = numpy.asarray(m, dtype=float)

    def _locate(self, J, p, q):
        ms = self.modelspace
        op = ms.get_orbit(p)
        oq = ms.get_orbit(q)
        ch = ms.get_two_body_channel_index(J, (op.l+oq.l) % 2,
                                           (op.tz2+oq.tz2) // 2)
        if ch is None:
            return None, None, 0
        tbc = ms.get_two_body_channel(ch)
        i = tbc.get_local_index(p, q)
        if i is None:
            return None, None, 0
        phase = tbc.get_ket(i).phase(J) if p > q else 1
        return ch, i, phase

    def get_tbme_j_norm(self, J, a, b, c, d):
        ch_bra, ibra, phase_bra = self._locate(J, a, b)
        ch_ket, iket, phase_ket = self._locate(J, c, d)
        if ibra is None or iket is None:
            return 0.
        m = self.mat.get((ch_bra, ch_ket))
        if m is None:
            return 0.
        return phase_bra * phase_ket * m[ibra, iket]

    def get_tbme_j(self, J, a, b, c, d):
        norm = 1.
        if a == b:
            norm *= SQRT2
        if c == d:
            norm *= SQRT2
        return norm * self.get_tbme_j_norm(J, a, b, c, d)

    def set_tbme_j(self, J, a, b, c, d, tbme):
        '''Set the normalized element and its Hermitian partner'''
        ch_bra, ibra, phase_bra = self._locate(J, a, b)
        ch_ket, iket, phase_ket = self._locate(J, c, d)
        if ibra is None or iket is None:
            raise KeyError('No J=%d kets for (%d,%d) (%d,%d)' % (J, a, b, c, d))
        if ch_bra != ch_ket:
            raise KeyError('Scalar operator cannot couple channels %d and %d'
                           % (ch_bra, ch_ket))
        m = self.mat[(ch_bra, ch_ket)]
        m[ibra, iket] = m[iket, ibra] = phase_bra * phase_ket * tbme

    def norm(self):
        return numpy.sqrt(sum(numpy.linalg.norm(m)**2 for m in self.mat.values()))


class ThreeBodyME:
    '''Sparse J-coupled proton-neutron three-body elements
    <(ab)Jab c; J2|V|(de)Jde f; J2>.  Elements are looked up with the orbit
    ordering they were stored with.'''
    def __init__(self, modelspace):
        self.modelspace = modelspace
        self.elements = {}

    def __len__(self):
        return len(self.elements)

    def keys(self):
        return self.elements.keys()

    def get_me_pn(self, Jab, Jde, J2, a, b, c, d, e, f):
        return self.elements.get((Jab, Jde, J2, a, b, c, d, e, f), 0.)

    def set_me_pn(self, Jab, Jde, J2, a, b, c, d, e, f, v):
        self.elements[(Jab, Jde, J2, a, b, c, d, e, f)] = v
        self.elements[(Jde, Jab, J2, d, e, f, a, b, c)] = v

    def get_me_pn_no2b(self, a, b, c, d, e, f, J):
        '''Sum over the total J2 with weight (J2+1); c and f are the
        spectator orbits.'''
        j2c = self.modelspace.get_orbit(c).j2
        v = 0.
        for J3 in range(abs(2*J-j2c), 2*J+j2c+1, 2):
            v += (J3+1) * self.get_me_pn(J, J, J3, a, b, c, d, e, f)
        return v


class ThreeBodyNO2B:
    '''Precomputed NO2B residual of a three-body interaction'''
    def __init__(self, modelspace):
        self.modelspace = modelspace
        self.elements = {}

    @property
    def initialized(self):
        return len(self.elements) > 0

    def get_me_pn_no2b(self, a, b, c, d, e, f, J):
        return self.elements.get((a, b, c, d, e, f, J), 0.)

    def set_me_pn_no2b(self, a, b, c, d, e, f, J, v):
        self.elements[(a, b, c, d, e, f, J)] = v
        self.elements[(d, e, f, a, b, c, J)] = v


class Operator:
    '''
    Attributes:
        zero_body : float
        one_body : ndarray (norbits, norbits)
        two_body : :class:`TwoBodyME`
        three_body : :class:`ThreeBodyME` or None
            Allocated when particle_rank > 2.
        three_body_no2b : :class:`ThreeBodyNO2B` or None
        e3max : int
            Cut on 2n+l summed over the three orbits of a 3-body state.
    '''
    def __init__(self, modelspace, particle_rank=2, e3max=None):
        self.modelspace = modelspace
        self.particle_rank = particle_rank
        if e3max is None:
            e3max = 3 * max(o.e2 for o in modelspace.orbits)
        self.e3max = e3max
        self.zero_body = 0.
        norb = modelspace.norbits
        self.one_body = numpy.zeros((norb, norb))
        self.two_body = TwoBodyME(modelspace)
        self.three_body = None
        self.three_body_no2b = None
        if particle_rank > 2:
            self.three_body = ThreeBodyME(modelspace)

    @property
    def one_body_channels(self):
        return self.modelspace.one_body_channels

    @property
    def has_three_body_force(self):
        '''A three-body interaction or its NO2B residual is present'''
        no2b = self.three_body_no2b
        return (self.particle_rank > 2 and self.three_body is not None
                or no2b is not None and no2b.initialized)

    def copy(self):
        return copy.deepcopy(self, memo={id(self.modelspace): self.modelspace})

    def get_tbme_j(self, J, a, b, c, d):
        return self.two_body.get_tbme_j(J, a, b, c, d)

    def get_v3no2b(self, a, b, c, d, e, f, J):
        if self.three_body_no2b is not None and self.three_body_no2b.initialized:
            return self.three_body_no2b.get_me_pn_no2b(a, b, c, d, e, f, J)
        elif self.three_body is not None:
            return self.three_body.get_me_pn_no2b(a, b, c, d, e, f, J)
        return 0.

    def norm(self):
        return numpy.sqrt(self.zero_body**2 + numpy.linalg.norm(self.one_body)**2
                          + self.two_body.norm()**2)

    def dump(self, verbose=logger.INFO):
        log = logger.new_logger(self.modelspace, verbose)
        log.info('zero body = %.10f', self.zero_body)
        log.info('||one body|| = %.10f  ||two body|| = %.10f',
                 numpy.linalg.norm(self.one_body), self.two_body.norm())
        if self.three_body is not None:
            log.info('three-body elements = %d', len(self.three_body))
        return self

#!/usr/bin/env python

import unittest
import numpy
from nuclnat import modelspace
from nuclnat import operator
from nuclnat import hf
from nuclnat import mbpt2

def make_hamiltonian(ms, scale=.5):
    numpy.random.seed(7)
    h = operator.Operator(ms)
    for i in ms.all_orbits:
        h.one_body[i,i] = 10. * (ms.get_orbit(i).e2 + 1.5)
    for orbs in ms.one_body_channels.values():
        for i in orbs:
            for j in orbs:
                if i < j:
                    h.one_body[i,j] = h.one_body[j,i] = .3 * numpy.random.random()
    for ch, tbc in enumerate(ms.two_body_channels):
        v = numpy.random.random((tbc.nkets, tbc.nkets)) - .5
        h.two_body.set_matrix(ch, ch, scale * (v + v.T))
    return h

def setUpModule():
    global ms, mf, hno, jfac
    ms = modelspace.M(emax=2, Z=2, N=2, verbose=0)
    mf = hf.MeanField(make_hamiltonian(ms))
    hno = mf.get_normal_ordered_h()
    jfac = numpy.array([o.j2+1 for o in ms.orbits])

def tearDownModule():
    global ms, mf, hno, jfac
    del ms, mf, hno, jfac

class KnownValues(unittest.TestCase):
    def test_no_interaction(self):
        h0 = operator.Operator(ms)
        h0.one_body = hno.one_body
        rho = mbpt2.make_rdm1(h0, ms)
        self.assertAlmostEqual(abs(rho - numpy.diag(ms.get_occupations())).max(), 0, 14)

    def test_rdm1(self):
        rho = mbpt2.make_rdm1(hno, ms)
        self.assertAlmostEqual(abs(rho - rho.T).max(), 0, 14)
        self.assertAlmostEqual(numpy.dot(rho.diagonal(), jfac), 4., 10)
        for orbs in ms.one_body_channels.values():
            others = [i for i in ms.all_orbits if i not in orbs]
            self.assertAlmostEqual(abs(rho[numpy.ix_(orbs, others)]).max(), 0, 14)
        # holes are depleted, particles get populated
        self.assertTrue(.9 < rho[0,0] < 1)
        self.assertTrue(.9 < rho[1,1] < 1)
        self.assertTrue(all(rho[i,i] >= 0 for i in ms.particles))
        self.assertTrue(abs(rho[0,10]) > 0)

    def test_species_conservation(self):
        rho = mbpt2.make_rdm1(hno, ms)
        protons = [o.index for o in ms.orbits if o.tz2 < 0]
        neutrons = [o.index for o in ms.orbits if o.tz2 > 0]
        self.assertAlmostEqual(numpy.dot(rho.diagonal()[protons], jfac[protons]), 2., 10)
        self.assertAlmostEqual(numpy.dot(rho.diagonal()[neutrons], jfac[neutrons]), 2., 10)

    def test_pp_hh_traces(self):
        rho_pp = mbpt2.make_rdm1_pp(hno, ms, numpy.zeros((12, 12)))
        rho_hh = mbpt2.make_rdm1_hh(hno, ms, numpy.zeros((12, 12)))
        tr_pp = numpy.dot(rho_pp.diagonal(), jfac)
        tr_hh = numpy.dot(rho_hh.diagonal(), jfac)
        self.assertTrue(tr_pp > 0)
        self.assertAlmostEqual(tr_pp + tr_hh, 4., 10)
        self.assertAlmostEqual(abs(rho_pp[numpy.ix_(ms.holes, ms.holes)]).max(), 0, 14)

    def test_ph_scaling(self):
        rho_ph = mbpt2.make_rdm1_ph(hno, ms, numpy.zeros((12, 12)))
        self.assertAlmostEqual(abs(rho_ph.diagonal()).max(), 0, 14)
        self.assertTrue(abs(rho_ph).max() > 0)
        h2 = hno.copy()
        for key in h2.two_body.mat:
            h2.two_body.mat[key] = 2 * h2.two_body.mat[key]
        rho_ph2 = mbpt2.make_rdm1_ph(h2, ms, numpy.zeros((12, 12)))
        self.assertAlmostEqual(abs(rho_ph2 - 4*rho_ph).max(), 0, 12)

    def test_ph_near_degenerate_gap(self):
        # The PH block is not regularized: it grows without bound when a
        # particle comes down onto a hole of the same channel, while the
        # level-mixed PP and HH blocks stay finite.
        ph = []
        for gap in (1e-1, 1e-2, 1e-3):
            h2 = hno.copy()
            h2.one_body = hno.one_body.copy()
            h2.one_body[10,10] = h2.one_body[0,0] + gap
            rho_pp = mbpt2.make_rdm1_pp(h2, ms, numpy.zeros((12, 12)))
            rho_hh = mbpt2.make_rdm1_hh(h2, ms, numpy.zeros((12, 12)))
            rho_ph = mbpt2.make_rdm1_ph(h2, ms, numpy.zeros((12, 12)))
            self.assertTrue(abs(rho_pp).max() < 1)
            self.assertTrue(abs(rho_hh - numpy.diag(ms.get_occupations())).max() < 1)
            self.assertTrue(numpy.all(numpy.isfinite(rho_ph)))
            ph.append(abs(rho_ph[10,0]))
        self.assertTrue(ph[1] > 5 * ph[0])
        self.assertTrue(ph[2] > 5 * ph[1])

    def test_level_mixing(self):
        self.assertAlmostEqual(mbpt2._level_mixing(1e-8, 4.), 2.5e-9, 15)
        self.assertAlmostEqual(mbpt2._level_mixing(-1e-8, 4.), -2.5e-9, 15)
        self.assertAlmostEqual(mbpt2._level_mixing(0., 4.), 0, 15)
        v = mbpt2._level_mixing(1e6, 1.)
        self.assertTrue(.49 < v < .5)
        # degenerate levels mix completely
        self.assertAlmostEqual(mbpt2._level_mixing(.1, 0.), .5, 15)

    def test_mbpt2_density(self):
        dens = mbpt2.MBPT2Density(mf)
        rho = dens.kernel(hno)
        self.assertAlmostEqual(abs(rho - mbpt2.make_rdm1(hno, ms)).max(), 0, 14)
        self.assertTrue(dens.rdm1 is rho)

if __name__ == "__main__":
    print("Full Tests for nuclnat.mbpt2")
    unittest.main()

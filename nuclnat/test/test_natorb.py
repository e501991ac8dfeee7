#!/usr/bin/env python

import io
import sys
import unittest
import numpy
from pyscf.lib import logger
from nuclnat import modelspace
from nuclnat import operator
from nuclnat import hf
from nuclnat import natorb
from nuclnat import MassConservationError, DiagonalizationError, BackfillError

def make_hamiltonian(ms, scale=.5):
    numpy.random.seed(3)
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
    global ms, mf, no
    ms = modelspace.M(emax=2, Z=2, N=2, verbose=0)
    mf = hf.MeanField(make_hamiltonian(ms))
    no = natorb.NatOrb(mf)
    no.kernel()

def tearDownModule():
    global ms, mf, no
    del ms, mf, no

class KnownValues(unittest.TestCase):
    def test_diagonalize_2x2(self):
        rho = numpy.array([[.9, .05],
                           [.05, .1]])
        occ, c = natorb.diagonalize_rdm1(rho, {(0, 1, -1): (0, 1)}, verbose=0)
        self.assertEqual(occ.shape, (2,))
        self.assertEqual(c.shape, (2, 2))
        self.assertAlmostEqual(occ[0], .5 + numpy.sqrt(.1625), 12)
        self.assertAlmostEqual(occ[1], .5 - numpy.sqrt(.1625), 12)
        self.assertAlmostEqual(occ[0], 0.9031128874, 9)
        self.assertAlmostEqual(abs(c.T.dot(c) - numpy.eye(2)).max(), 0, 12)
        self.assertTrue(c[0,0] > 0 and c[1,1] > 0)
        self.assertTrue(abs(c[0,0]) > abs(c[1,0]))
        self.assertAlmostEqual(abs(c.T.dot(rho).dot(c) - numpy.diag(occ)).max(), 0, 12)

    def test_diagonalize_blocks(self):
        rho = no.nat.rho
        occ, c = natorb.diagonalize_rdm1(rho, ms.one_body_channels, verbose=0)
        self.assertAlmostEqual(abs(c.T.dot(c) - numpy.eye(ms.norbits)).max(), 0, 12)
        for orbs in ms.one_body_channels.values():
            others = [i for i in ms.all_orbits if i not in orbs]
            self.assertAlmostEqual(abs(c[numpy.ix_(orbs, others)]).max(), 0, 14)
            for i in orbs:
                self.assertTrue(c[i,i] > 0)
        self.assertAlmostEqual(abs(c.T.dot(rho).dot(c) - numpy.diag(occ)).max(), 0, 12)

        c1, occ1 = natorb.reorder_coefficients(c, occ, ms.one_body_channels, verbose=0)
        self.assertAlmostEqual(abs(c1 - c).max(), 0, 14)
        self.assertAlmostEqual(abs(occ1 - occ).max(), 0, 14)

    def test_reorder(self):
        c = numpy.array([[.1, .995],
                         [-.995, .1]])
        occ = numpy.array([.2, .8])
        c1, occ1 = natorb.reorder_coefficients(c, occ, {(0, 1, 1): (0, 1)}, verbose=0)
        self.assertAlmostEqual(abs(c1 - [[.995, -.1], [.1, .995]]).max(), 0, 14)
        self.assertTrue(abs(c1[1,1]) >= abs(c1[1,0]))
        self.assertTrue(c1[0,0] > 0 and c1[1,1] > 0)
        self.assertAlmostEqual(occ1[0], .8, 14)
        self.assertAlmostEqual(occ1[1], .2, 14)

    def test_diagonalize_nan(self):
        rho = numpy.array([[.9, numpy.nan],
                           [numpy.nan, .1]])
        self.assertRaises(DiagonalizationError, natorb.diagonalize_rdm1,
                          rho, {(0, 1, -1): (0, 1)}, verbose=0)

    def test_check_mass(self):
        rho = numpy.diag(ms.get_occupations())
        self.assertAlmostEqual(natorb.check_mass(rho, ms), 4., 12)
        rho[0,0] -= 1e-4
        self.assertRaises(MassConservationError, natorb.check_mass, rho, ms)

        # target mass inconsistent with the reference occupations
        ms1 = modelspace.M(emax=2, Z=2, N=2, A=5, verbose=0)
        mf1 = hf.MeanField(make_hamiltonian(ms1))
        self.assertRaises(MassConservationError, natorb.get_natural_orbitals, mf1)

    def test_kernel(self):
        occ = no.nat.occ
        jfac = numpy.array([o.j2+1 for o in ms.orbits])
        self.assertAlmostEqual(numpy.dot(occ, jfac), 4., 10)
        self.assertTrue(occ[0] > .9 and occ[1] > .9)
        self.assertTrue(all(abs(occ[i]) < .1 for i in range(2, 12)))
        for i in ms.all_orbits:
            self.assertAlmostEqual(ms.get_orbit(i).occ_nat, abs(occ[i]), 14)
        c = no.coeff_ho2nat
        self.assertAlmostEqual(abs(c - mf.mo_coeff.dot(no.coeff_hf2nat)).max(), 0, 14)
        self.assertAlmostEqual(abs(c.T.dot(c) - numpy.eye(12)).max(), 0, 12)
        # mean-field reference untouched
        self.assertEqual(list(no.nat.holeorbs), [0, 1])
        self.assertAlmostEqual(abs(no.nat.hole_occ - 1).max(), 0, 14)
        self.assertTrue(no.nat.backfill is None)

    def test_normal_ordered_hnat(self):
        hno = no.get_normal_ordered_h()
        self.assertAlmostEqual(abs(hno.one_body - hno.one_body.T).max(), 0, 12)
        for orbs in ms.one_body_channels.values():
            others = [i for i in ms.all_orbits if i not in orbs]
            self.assertAlmostEqual(abs(hno.one_body[numpy.ix_(orbs, others)]).max(), 0, 12)
        rho = hf.make_rdm1(no.coeff_ho2nat, [0, 1], [1., 1.])
        self.assertAlmostEqual(hno.zero_body, mf.energy_tot(rho)[0], 10)
        self.assertTrue(hno.three_body is None)
        self.assertEqual(list(mf.holeorbs), [0, 1])

        # operators transform consistently with the natural basis
        h1 = no.transform_ho_to_nat(mf.hbare)
        h2 = no.transform_hf_to_nat(mf.transform_to_hf_basis(mf.hbare))
        self.assertAlmostEqual(abs(h1.one_body - h2.one_body).max(), 0, 12)
        for ch in range(ms.nchannels):
            self.assertAlmostEqual(abs(h1.two_body.get_matrix(ch)
                                       - h2.two_body.get_matrix(ch)).max(), 0, 12)

    def test_dump(self):
        buf = io.StringIO()
        no.stdout = buf
        try:
            no.dump_occupation(verbose=logger.INFO)
            no.dump_spe_and_wf(verbose=logger.INFO)
        finally:
            no.stdout = sys.stdout
        out = buf.getvalue()
        self.assertTrue('occ_nat' in out)
        self.assertTrue('overlaps' in out)
        self.assertTrue('n(1-n)' in out)

    def test_nat_occupations(self):
        ms1 = modelspace.M(emax=2, Z=2, N=2, verbose=0)
        mf1 = hf.MeanField(make_hamiltonian(ms1))
        no1 = natorb.NatOrb(mf1)
        no1.use_nat_occupations = True
        no1.kernel()
        result = no1.nat.backfill
        self.assertTrue(result.feasible)
        z = sum((ms1.get_orbit(i).j2+1) * n for i, n in zip(result.holeorbs, result.hole_occ)
                if ms1.get_orbit(i).tz2 < 0)
        self.assertAlmostEqual(z, 2., 6)
        self.assertEqual(list(ms1.holes), list(result.holeorbs))
        self.assertTrue(all(result.hole_occ <= 1.))
        hno = no1.get_normal_ordered_h()
        self.assertAlmostEqual(abs(hno.one_body - hno.one_body.T).max(), 0, 12)

        # quantities of the new reference come from the natural basis
        self.assertEqual(list(mf1.holeorbs), [0, 1])
        rho = hf.make_rdm1(no1.coeff_ho2nat, result.holeorbs, result.hole_occ)
        self.assertAlmostEqual(abs(no1.make_rdm1() - rho).max(), 0, 14)
        jfac = numpy.array([o.j2+1 for o in ms1.orbits])
        self.assertAlmostEqual(numpy.dot(no1.make_rdm1().diagonal(), jfac), 4., 6)
        fock = no1.get_fock()
        self.assertAlmostEqual(abs(fock - mf1.get_fock(rho)).max(), 0, 14)
        f_nat = no1.coeff_ho2nat.T.dot(fock).dot(no1.coeff_ho2nat)
        self.assertAlmostEqual(abs(hno.one_body - f_nat).max(), 0, 10)

    def test_backfill_strict(self):
        ms1 = modelspace.M(emax=2, Z=2, N=2, verbose=0)
        mf1 = hf.MeanField(make_hamiltonian(ms1))
        no1 = natorb.NatOrb(mf1)
        no1.use_nat_occupations = True
        no1.keep_occ_threshold = 1.5
        self.assertRaises(BackfillError, no1.kernel)

        ms1 = modelspace.M(emax=2, Z=2, N=2, verbose=0)
        mf1 = hf.MeanField(make_hamiltonian(ms1))
        no1 = natorb.NatOrb(mf1)
        no1.use_nat_occupations = True
        no1.keep_occ_threshold = 1.5
        no1.strict = False
        no1.kernel()
        self.assertFalse(no1.nat.backfill.feasible)
        self.assertEqual(list(no1.nat.holeorbs), [0, 1])
        self.assertEqual(ms1.holes, [0, 1])

if __name__ == "__main__":
    print("Full Tests for nuclnat.natorb")
    unittest.main()

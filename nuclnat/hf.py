#!/usr/bin/env python

'''
Mean-field reference for the natural-orbital engine.

This class does not iterate to self-consistency.  It holds the bare
Hamiltonian, the rotation from the original (oscillator) basis to the
mean-field basis and the reference occupations, and rebuilds the Fock
matrix and the reference energy for any one-body density matrix passed in.
'''

import numpy
from pyscf import lib
from pyscf.lib import logger
from nuclnat import transform


def make_rdm1(mo_coeff, holeorbs, hole_occ):
    '''rho = C[:,h] diag(occ) C[:,h]^T in the original basis'''
    mocc = mo_coeff[:,holeorbs]
    return numpy.dot(mocc * hole_occ, mocc.T)

def get_vmon(hbare, rho):
    '''One-body potential of the two-body interaction for density rho

    V_ij = 1/(2j_i+1) sum_ab rho_ab sum_J (2J+1) <ia|V|jb>_J
    '''
    ms = hbare.modelspace
    vij = numpy.zeros_like(hbare.one_body)
    for i in ms.all_orbits:
        oi = ms.get_orbit(i)
        for j in ms.get_one_body_channel(i):
            if j < i:
                continue
            v = 0.
            for block in ms.one_body_channels.values():
                for a in block:
                    oa = ms.get_orbit(a)
                    for b in block:
                        if rho[a,b] == 0:
                            continue
                        for J in range(abs(oi.j2-oa.j2)//2, (oi.j2+oa.j2)//2+1):
                            v += (2*J+1) * rho[a,b] * hbare.get_tbme_j(J, i, a, j, b)
            vij[i,j] = vij[j,i] = v / (oi.j2+1)
    return vij

def get_vmon3(hbare, rho):
    '''One-body potential of the three-body interaction for density rho,
    built from the NO2B-summed elements.

    V3_ij = 1/(2j_i+1) sum_abcd rho_ab rho_cd sum_J V3no2b(a c i, b d j; J)
    '''
    ms = hbare.modelspace
    v3ij = numpy.zeros_like(hbare.one_body)
    if not hbare.has_three_body_force:
        return v3ij
    occupied = [a for a in ms.all_orbits if abs(rho[a]).max() > 0]
    for i in ms.all_orbits:
        oi = ms.get_orbit(i)
        for j in ms.get_one_body_channel(i):
            if j < i:
                continue
            v = 0.
            for a in occupied:
                oa = ms.get_orbit(a)
                for b in ms.get_one_body_channel(a):
                    if rho[a,b] == 0:
                        continue
                    for c in occupied:
                        oc = ms.get_orbit(c)
                        for d in ms.get_one_body_channel(c):
                            if rho[c,d] == 0:
                                continue
                            for J in range(abs(oa.j2-oc.j2)//2, (oa.j2+oc.j2)//2+1):
                                v += rho[a,b] * rho[c,d] * hbare.get_v3no2b(a, c, i, b, d, j, J)
            v3ij[i,j] = v3ij[j,i] = v / (oi.j2+1)
    return v3ij


class MeanField(lib.StreamObject):
    '''
    Attributes:
        hbare : :class:`Operator`
            Bare Hamiltonian in the original basis
        mo_coeff : ndarray
            Rotation from the original basis to the mean-field basis.
            1st index is the original basis.
        holeorbs, hole_occ : ndarray
            Occupied orbits of the reference and their occupations
    '''
    def __init__(self, hbare, mo_coeff=None):
        ms = hbare.modelspace
        self.hbare = hbare
        self.modelspace = ms
        self.verbose = ms.verbose
        self.stdout = ms.stdout
        self.max_workers = None
        if mo_coeff is None:
            mo_coeff = numpy.eye(ms.norbits)
        self.mo_coeff = numpy.asarray(mo_coeff, dtype=float)
        self.holeorbs = numpy.array(ms.holes, dtype=int)
        self.hole_occ = numpy.array([ms.get_orbit(i).occ for i in ms.holes])
        self._keys = set(self.__dict__.keys())

    def make_rdm1(self, mo_coeff=None, holeorbs=None, hole_occ=None):
        if mo_coeff is None: mo_coeff = self.mo_coeff
        if holeorbs is None: holeorbs = self.holeorbs
        if hole_occ is None: hole_occ = self.hole_occ
        return make_rdm1(mo_coeff, holeorbs, hole_occ)

    def get_veff(self, rho=None):
        if rho is None:
            rho = self.make_rdm1()
        return get_vmon(self.hbare, rho), get_vmon3(self.hbare, rho)

    def get_fock(self, rho=None, veff=None):
        if veff is None:
            veff = self.get_veff(rho)
        vij, v3ij = veff
        return self.hbare.one_body + vij + .5 * v3ij

    def energy_tot(self, rho=None, veff=None):
        '''Reference energy E0 + e1 + e2 + e3 for density rho'''
        if rho is None:
            rho = self.make_rdm1()
        if veff is None:
            veff = self.get_veff(rho)
        vij, v3ij = veff
        jfac = numpy.array([o.j2+1 for o in self.modelspace.orbits], dtype=float)
        e1 = numpy.einsum('i,ij,ji->', jfac, rho, self.hbare.one_body)
        e2 = numpy.einsum('i,ij,ji->', jfac, rho, vij) * .5
        e3 = numpy.einsum('i,ij,ji->', jfac, rho, v3ij) / 6.
        e_tot = self.hbare.zero_body + e1 + e2 + e3
        logger.debug(self, 'e1 = %.10g  e2 = %.10g  e3 = %.10g', e1, e2, e3)
        return e_tot, e1, e2, e3

    def get_normal_ordered_h(self, particle_rank=2):
        '''Normal-ordered Hamiltonian in the mean-field basis'''
        cput0 = (logger.process_clock(), logger.perf_counter())
        rho = self.make_rdm1()
        veff = self.get_veff(rho)
        fock = self.get_fock(veff=veff)
        e_tot = self.energy_tot(rho, veff)[0]
        hno = transform.get_normal_ordered_h(self.hbare, self.mo_coeff, fock,
                                             e_tot, rho, particle_rank,
                                             max_workers=self.max_workers,
                                             verbose=self.verbose)
        logger.timer(self, 'normal-ordered H in mean-field basis', *cput0)
        return hno

    def transform_to_hf_basis(self, op):
        return transform.transform_operator(op, self.mo_coeff)

"""
Physical constants and unit conversions for QMMMKit package.

Internal units: Å, eV, amu, fs, K, elementary charge.
"""

import numpy as np

# Exact constants
PI = np.pi
SQRT2 = np.sqrt(2.0)
HUGE_NUM = 1e50  # Large energy used to reject unphysical configurations
FS_TO_S = 1e-15
M_TO_ANG = 1.0e10
ATM_TO_PA = 1.01325e5

# Physical constants (CODATA 2018)
EV_TO_J = 1.602176634e-19  # eV to Joules
SI_TO_EV = 1.0 / EV_TO_J
BOLTZMANN_EV_K = 8.617333262e-5  # eV/K
PLANCK_EV_S = 4.135667696e-15  # eV·s
HBAR_EV_S = PLANCK_EV_S / (2 * np.pi)  # eV·s
EPS_ZERO = 8.8541878128e-12  # F/m
AMU_TO_KG = 1.66053906660e-27
ELECTRON_MASS_KG = 9.1093837015e-31
AVOGADRO = 6.02214076e23

# Atomic units
BOHR_TO_ANG = 0.529177210903  # Bohr to Angstroms
HARTREE_TO_EV = 27.211386245988  # Hartree to eV

# Derived constants
C2EV = M_TO_ANG / (4 * PI * SI_TO_EV * EPS_ZERO)  # e^2/(4 pi eps0) in eV·Å
ELECTRON_MASS_AMU = ELECTRON_MASS_KG / AMU_TO_KG
ATM_TO_EV_ANG3 = SI_TO_EV * ATM_TO_PA / M_TO_ANG**3
KCAL_MOL_TO_EV = 4184.0 * SI_TO_EV / AVOGADRO
# amu·Å²/s² -> eV (path-integral spring energies)
AMU_ANG2_S2_TO_EV = AMU_TO_KG * SI_TO_EV / (M_TO_ANG * M_TO_ANG)
# eV/(Å·amu) -> Å/fs²
FORCE_TO_ACCEL = EV_TO_J / (1e-10 * AMU_TO_KG) * 1e10 / 1e30
# amu·Å²/fs² -> eV
AMU_ANG2_FS2_TO_EV = AMU_TO_KG * 1e-20 / 1e-30 / EV_TO_J

def kelvin_to_eV(temp_K):
    """Convert temperature from Kelvin to eV."""
    return temp_K * BOLTZMANN_EV_K

def inverse_temperature(temp_K):
    """Return beta = 1/(kB T) in 1/eV."""
    return 1.0 / kelvin_to_eV(temp_K)

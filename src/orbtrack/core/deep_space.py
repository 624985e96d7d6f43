"""Deep-space (SDP4) terms for orbits with periods of 225 minutes or more.

Adds lunar-solar secular and periodic perturbations and the 12-hour and
24-hour geopotential resonance terms to the SGP4 mean elements. Symbols
follow Vallado et al., "Revisiting Spacetrack Report #3" (AIAA 2006-6753).

The resonance integrator restarts from epoch on every call, so
:func:`secular_update` depends only on its arguments.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

logger = logging.getLogger(__name__)

TWOPI = 2.0 * math.pi

# Lunar-solar constants
ZES = 0.01675
ZEL = 0.05490
ZNS = 1.19459e-5
ZNL = 1.5835218e-4
C1SS = 2.9864797e-6
C1L = 4.7968065e-7
ZSINIS = 0.39785416
ZCOSIS = 0.91744867
ZCOSGS = 0.1945905
ZSINGS = -0.98088458

# Resonance constants
Q22 = 1.7891679e-6
Q31 = 2.1460748e-6
Q33 = 2.2123015e-7
ROOT22 = 1.7891679e-6
ROOT32 = 3.7393792e-7
ROOT44 = 7.3636953e-9
ROOT52 = 1.1428639e-7
ROOT54 = 2.1765803e-9
RPTIM = 4.37526908801129966e-3
FASX2 = 0.13130908
FASX4 = 2.8843198
FASX6 = 0.37448087
G22 = 5.7686396
G32 = 0.95240898
G44 = 1.8014998
G52 = 1.0508330
G54 = 4.4108898
STEPP = 720.0
STEP2 = 259200.0

_LOW_INCLINATION = 5.2359877e-2


@dataclass(frozen=True)
class DeepSpaceTerms:
    """Per-record deep-space coefficients computed once at initialisation.

    ``resonance`` is 0 (none), 1 (24-hour synchronous) or 2 (12-hour,
    eccentric half-day orbits).
    """

    gsto: float
    zmol: float
    zmos: float
    # Solar periodic coefficients
    se2: float
    se3: float
    si2: float
    si3: float
    sl2: float
    sl3: float
    sl4: float
    sgh2: float
    sgh3: float
    sgh4: float
    sh2: float
    sh3: float
    # Lunar periodic coefficients
    ee2: float
    e3: float
    xi2: float
    xi3: float
    xl2: float
    xl3: float
    xl4: float
    xgh2: float
    xgh3: float
    xgh4: float
    xh2: float
    xh3: float
    # Lunar-solar secular rates
    dedt: float
    didt: float
    dmdt: float
    domdt: float
    dnodt: float
    # Resonance
    resonance: int = 0
    xlamo: float = 0.0
    xfact: float = 0.0
    del1: float = 0.0
    del2: float = 0.0
    del3: float = 0.0
    d2201: float = 0.0
    d2211: float = 0.0
    d3210: float = 0.0
    d3222: float = 0.0
    d4410: float = 0.0
    d4422: float = 0.0
    d5220: float = 0.0
    d5232: float = 0.0
    d5421: float = 0.0
    d5433: float = 0.0


def _lunar_solar_geometry(
    epoch: float, ecco: float, argpo: float, inclo: float, nodeo: float, no: float
) -> dict[str, float]:
    """Geometry of the Sun and Moon relative to the orbit at epoch.

    ``epoch`` is in days since 1949 December 31 00:00 UT.
    """
    snodm = math.sin(nodeo)
    cnodm = math.cos(nodeo)
    sinomm = math.sin(argpo)
    cosomm = math.cos(argpo)
    sinim = math.sin(inclo)
    cosim = math.cos(inclo)
    emsq = ecco * ecco
    betasq = 1.0 - emsq
    rtemsq = math.sqrt(betasq)

    day = epoch + 18261.5
    xnodce = math.fmod(4.5236020 - 9.2422029e-4 * day, TWOPI)
    stem = math.sin(xnodce)
    ctem = math.cos(xnodce)
    zcosil = 0.91375164 - 0.03568096 * ctem
    zsinil = math.sqrt(1.0 - zcosil * zcosil)
    zsinhl = 0.089683511 * stem / zsinil
    zcoshl = math.sqrt(1.0 - zsinhl * zsinhl)
    gam = 5.8351514 + 0.0019443680 * day
    zx = 0.39785416 * stem / zsinil
    zy = zcoshl * ctem + 0.91744867 * zsinhl * stem
    zx = math.atan2(zx, zy)
    zx = gam + zx - xnodce
    zcosgl = math.cos(zx)
    zsingl = math.sin(zx)

    zcosg = ZCOSGS
    zsing = ZSINGS
    zcosi = ZCOSIS
    zsini = ZSINIS
    zcosh = cnodm
    zsinh = snodm
    cc = C1SS
    xnoi = 1.0 / no

    # First pass: Sun, second pass: Moon
    passes = []
    for body in ("sun", "moon"):
        a1 = zcosg * zcosh + zsing * zcosi * zsinh
        a3 = -zsing * zcosh + zcosg * zcosi * zsinh
        a7 = -zcosg * zsinh + zsing * zcosi * zcosh
        a8 = zsing * zsini
        a9 = zsing * zsinh + zcosg * zcosi * zcosh
        a10 = zcosg * zsini
        a2 = cosim * a7 + sinim * a8
        a4 = cosim * a9 + sinim * a10
        a5 = -sinim * a7 + cosim * a8
        a6 = -sinim * a9 + cosim * a10

        x1 = a1 * cosomm + a2 * sinomm
        x2 = a3 * cosomm + a4 * sinomm
        x3 = -a1 * sinomm + a2 * cosomm
        x4 = -a3 * sinomm + a4 * cosomm
        x5 = a5 * sinomm
        x6 = a6 * sinomm
        x7 = a5 * cosomm
        x8 = a6 * cosomm

        z31 = 12.0 * x1 * x1 - 3.0 * x3 * x3
        z32 = 24.0 * x1 * x2 - 6.0 * x3 * x4
        z33 = 12.0 * x2 * x2 - 3.0 * x4 * x4
        z1 = 3.0 * (a1 * a1 + a2 * a2) + z31 * emsq
        z2 = 6.0 * (a1 * a3 + a2 * a4) + z32 * emsq
        z3 = 3.0 * (a3 * a3 + a4 * a4) + z33 * emsq
        z11 = -6.0 * a1 * a5 + emsq * (-24.0 * x1 * x7 - 6.0 * x3 * x5)
        z12 = -6.0 * (a1 * a6 + a3 * a5) + emsq * (
            -24.0 * (x2 * x7 + x1 * x8) - 6.0 * (x3 * x6 + x4 * x5)
        )
        z13 = -6.0 * a3 * a6 + emsq * (-24.0 * x2 * x8 - 6.0 * x4 * x6)
        z21 = 6.0 * a2 * a5 + emsq * (24.0 * x1 * x5 - 6.0 * x3 * x7)
        z22 = 6.0 * (a4 * a5 + a2 * a6) + emsq * (
            24.0 * (x2 * x5 + x1 * x6) - 6.0 * (x4 * x7 + x3 * x8)
        )
        z23 = 6.0 * a4 * a6 + emsq * (24.0 * x2 * x6 - 6.0 * x4 * x8)
        z1 = z1 + z1 + betasq * z31
        z2 = z2 + z2 + betasq * z32
        z3 = z3 + z3 + betasq * z33

        s3 = cc * xnoi
        s2 = -0.5 * s3 / rtemsq
        s4 = s3 * rtemsq
        s1 = -15.0 * ecco * s4
        s5 = x1 * x3 + x2 * x4
        s6 = x2 * x3 + x1 * x4
        s7 = x2 * x4 - x1 * x3

        passes.append(
            dict(
                s1=s1, s2=s2, s3=s3, s4=s4, s5=s5, s6=s6, s7=s7,
                z1=z1, z2=z2, z3=z3, z11=z11, z12=z12, z13=z13,
                z21=z21, z22=z22, z23=z23, z31=z31, z32=z32, z33=z33,
            )
        )

        if body == "sun":
            zcosg = zcosgl
            zsing = zsingl
            zcosi = zcosil
            zsini = zsinil
            zcosh = zcoshl * cnodm + zsinhl * snodm
            zsinh = snodm * zcoshl - cnodm * zsinhl
            cc = C1L

    sun, moon = passes
    geometry = {"s" + key: value for key, value in sun.items()}
    geometry.update(moon)
    geometry.update(
        sinim=sinim,
        cosim=cosim,
        emsq=emsq,
        zmol=math.fmod(4.7199672 + (0.22997150 * day - gam), TWOPI),
        zmos=math.fmod(6.2565837 + 0.017201977 * day, TWOPI),
    )
    return geometry


def initialise(
    *,
    epoch: float,
    gsto: float,
    xke: float,
    ecco: float,
    inclo: float,
    nodeo: float,
    argpo: float,
    mo: float,
    no: float,
    mdot: float,
    nodedot: float,
    xpidot: float,
) -> DeepSpaceTerms:
    """Compute the lunar-solar and resonance coefficients for one record.

    Args:
        epoch: Record epoch in days since 1949 December 31 00:00 UT.
        gsto: Greenwich sidereal angle at epoch (rad).
        xke: Gravity constant sqrt(GM) in earth radii^1.5 per minute.
        ecco, inclo, nodeo, argpo, mo: Mean elements at epoch (rad).
        no: Brouwer mean motion (rad/min).
        mdot, nodedot, xpidot: Secular rates from the near-Earth model.

    Returns:
        The frozen deep-space coefficients.
    """
    g = _lunar_solar_geometry(epoch, ecco, argpo, inclo, nodeo, no)
    sinim = g["sinim"]
    cosim = g["cosim"]
    emsq = g["emsq"]

    # Periodic coefficients
    ss1, ss2, ss3, ss4 = g["ss1"], g["ss2"], g["ss3"], g["ss4"]
    s1, s2, s3, s4 = g["s1"], g["s2"], g["s3"], g["s4"]
    periodic = dict(
        se2=2.0 * ss1 * g["ss6"],
        se3=2.0 * ss1 * g["ss7"],
        si2=2.0 * ss2 * g["sz12"],
        si3=2.0 * ss2 * (g["sz13"] - g["sz11"]),
        sl2=-2.0 * ss3 * g["sz2"],
        sl3=-2.0 * ss3 * (g["sz3"] - g["sz1"]),
        sl4=-2.0 * ss3 * (-21.0 - 9.0 * emsq) * ZES,
        sgh2=2.0 * ss4 * g["sz32"],
        sgh3=2.0 * ss4 * (g["sz33"] - g["sz31"]),
        sgh4=-18.0 * ss4 * ZES,
        sh2=-2.0 * ss2 * g["sz22"],
        sh3=-2.0 * ss2 * (g["sz23"] - g["sz21"]),
        ee2=2.0 * s1 * g["s6"],
        e3=2.0 * s1 * g["s7"],
        xi2=2.0 * s2 * g["z12"],
        xi3=2.0 * s2 * (g["z13"] - g["z11"]),
        xl2=-2.0 * s3 * g["z2"],
        xl3=-2.0 * s3 * (g["z3"] - g["z1"]),
        xl4=-2.0 * s3 * (-21.0 - 9.0 * emsq) * ZEL,
        xgh2=2.0 * s4 * g["z32"],
        xgh3=2.0 * s4 * (g["z33"] - g["z31"]),
        xgh4=-18.0 * s4 * ZEL,
        xh2=-2.0 * s2 * g["z22"],
        xh3=-2.0 * s2 * (g["z23"] - g["z21"]),
    )

    # Secular rates, solar then lunar
    ses = ss1 * ZNS * g["ss5"]
    sis = ss2 * ZNS * (g["sz11"] + g["sz13"])
    sls = -ZNS * ss3 * (g["sz1"] + g["sz3"] - 14.0 - 6.0 * emsq)
    sghs = ss4 * ZNS * (g["sz31"] + g["sz33"] - 6.0)
    shs = -ZNS * ss2 * (g["sz21"] + g["sz23"])
    if inclo < _LOW_INCLINATION or inclo > math.pi - _LOW_INCLINATION:
        shs = 0.0
    if sinim != 0.0:
        shs = shs / sinim
    sgs = sghs - cosim * shs

    dedt = ses + s1 * ZNL * g["s5"]
    didt = sis + s2 * ZNL * (g["z11"] + g["z13"])
    dmdt = sls - ZNL * s3 * (g["z1"] + g["z3"] - 14.0 - 6.0 * emsq)
    sghl = s4 * ZNL * (g["z31"] + g["z33"] - 6.0)
    shll = -ZNL * s2 * (g["z21"] + g["z23"])
    if inclo < _LOW_INCLINATION or inclo > math.pi - _LOW_INCLINATION:
        shll = 0.0
    domdt = sgs + sghl
    dnodt = shs
    if sinim != 0.0:
        domdt = domdt - cosim / sinim * shll
        dnodt = dnodt + shll / sinim

    resonance = 0
    if 0.0034906585 < no < 0.0052359877:
        resonance = 1
    if 8.26e-3 <= no <= 9.24e-3 and ecco >= 0.5:
        resonance = 2

    terms = dict(
        gsto=gsto,
        zmol=g["zmol"],
        zmos=g["zmos"],
        dedt=dedt,
        didt=didt,
        dmdt=dmdt,
        domdt=domdt,
        dnodt=dnodt,
        resonance=resonance,
        **periodic,
    )
    if resonance:
        terms.update(
            _resonance_terms(
                resonance, xke, gsto, ecco, inclo, nodeo, argpo, mo, no,
                mdot, nodedot, xpidot, dmdt, domdt, dnodt,
            )
        )
        logger.debug("Deep-space record uses resonance class %d", resonance)
    return DeepSpaceTerms(**terms)


def _resonance_terms(
    resonance: int,
    xke: float,
    gsto: float,
    ecco: float,
    inclo: float,
    nodeo: float,
    argpo: float,
    mo: float,
    no: float,
    mdot: float,
    nodedot: float,
    xpidot: float,
    dmdt: float,
    domdt: float,
    dnodt: float,
) -> dict[str, float]:
    sinim = math.sin(inclo)
    cosim = math.cos(inclo)
    aonv = (no / xke) ** (2.0 / 3.0)
    theta = math.fmod(gsto, TWOPI)

    if resonance == 1:
        emsq = ecco * ecco
        g200 = 1.0 + emsq * (-2.5 + 0.8125 * emsq)
        g310 = 1.0 + 2.0 * emsq
        g300 = 1.0 + emsq * (-6.0 + 6.60937 * emsq)
        f220 = 0.75 * (1.0 + cosim) * (1.0 + cosim)
        f311 = 0.9375 * sinim * sinim * (1.0 + 3.0 * cosim) - 0.75 * (1.0 + cosim)
        f330 = 1.0 + cosim
        f330 = 1.875 * f330 * f330 * f330
        del1 = 3.0 * no * no * aonv * aonv
        del2 = 2.0 * del1 * f220 * g200 * Q22
        del3 = 3.0 * del1 * f330 * g300 * Q33 * aonv
        del1 = del1 * f311 * g310 * Q31 * aonv
        return dict(
            del1=del1,
            del2=del2,
            del3=del3,
            xlamo=math.fmod(mo + nodeo + argpo - theta, TWOPI),
            xfact=mdot + xpidot - RPTIM + dmdt + domdt + dnodt - no,
        )

    em = ecco
    emsq = em * em
    eoc = em * emsq
    cosisq = cosim * cosim
    g201 = -0.306 - (em - 0.64) * 0.440
    if em <= 0.65:
        g211 = 3.616 - 13.2470 * em + 16.2900 * emsq
        g310 = -19.302 + 117.3900 * em - 228.4190 * emsq + 156.5910 * eoc
        g322 = -18.9068 + 109.7927 * em - 214.6334 * emsq + 146.5816 * eoc
        g410 = -41.122 + 242.6940 * em - 471.0940 * emsq + 313.9530 * eoc
        g422 = -146.407 + 841.8800 * em - 1629.014 * emsq + 1083.4350 * eoc
        g520 = -532.114 + 3017.977 * em - 5740.032 * emsq + 3708.2760 * eoc
    else:
        g211 = -72.099 + 331.819 * em - 508.738 * emsq + 266.724 * eoc
        g310 = -346.844 + 1582.851 * em - 2415.925 * emsq + 1246.113 * eoc
        g322 = -342.585 + 1554.908 * em - 2366.899 * emsq + 1215.972 * eoc
        g410 = -1052.797 + 4758.686 * em - 7193.992 * emsq + 3651.957 * eoc
        g422 = -3581.690 + 16178.110 * em - 24462.770 * emsq + 12422.520 * eoc
        if em > 0.715:
            g520 = -5149.66 + 29936.92 * em - 54087.36 * emsq + 31324.56 * eoc
        else:
            g520 = 1464.74 - 4664.75 * em + 3763.64 * emsq
    if em < 0.7:
        g533 = -919.22770 + 4988.6100 * em - 9064.7700 * emsq + 5542.21 * eoc
        g521 = -822.71072 + 4568.6173 * em - 8491.4146 * emsq + 5337.524 * eoc
        g532 = -853.66600 + 4690.2500 * em - 8624.7700 * emsq + 5341.4 * eoc
    else:
        g533 = -37995.780 + 161616.52 * em - 229838.20 * emsq + 109377.94 * eoc
        g521 = -51752.104 + 218913.95 * em - 309468.16 * emsq + 146349.42 * eoc
        g532 = -40023.880 + 170470.89 * em - 242699.48 * emsq + 115605.82 * eoc

    sini2 = sinim * sinim
    f220 = 0.75 * (1.0 + 2.0 * cosim + cosisq)
    f221 = 1.5 * sini2
    f321 = 1.875 * sinim * (1.0 - 2.0 * cosim - 3.0 * cosisq)
    f322 = -1.875 * sinim * (1.0 + 2.0 * cosim - 3.0 * cosisq)
    f441 = 35.0 * sini2 * f220
    f442 = 39.3750 * sini2 * sini2
    f522 = 9.84375 * sinim * (
        sini2 * (1.0 - 2.0 * cosim - 5.0 * cosisq)
        + 0.33333333 * (-2.0 + 4.0 * cosim + 6.0 * cosisq)
    )
    f523 = sinim * (
        4.92187512 * sini2 * (-2.0 - 4.0 * cosim + 10.0 * cosisq)
        + 6.56250012 * (1.0 + 2.0 * cosim - 3.0 * cosisq)
    )
    f542 = 29.53125 * sinim * (
        2.0 - 8.0 * cosim + cosisq * (-12.0 + 8.0 * cosim + 10.0 * cosisq)
    )
    f543 = 29.53125 * sinim * (
        -2.0 - 8.0 * cosim + cosisq * (12.0 + 8.0 * cosim - 10.0 * cosisq)
    )

    xno2 = no * no
    ainv2 = aonv * aonv
    temp1 = 3.0 * xno2 * ainv2
    temp = temp1 * ROOT22
    d2201 = temp * f220 * g201
    d2211 = temp * f221 * g211
    temp1 = temp1 * aonv
    temp = temp1 * ROOT32
    d3210 = temp * f321 * g310
    d3222 = temp * f322 * g322
    temp1 = temp1 * aonv
    temp = 2.0 * temp1 * ROOT44
    d4410 = temp * f441 * g410
    d4422 = temp * f442 * g422
    temp1 = temp1 * aonv
    temp = temp1 * ROOT52
    d5220 = temp * f522 * g520
    d5232 = temp * f523 * g532
    temp = 2.0 * temp1 * ROOT54
    d5421 = temp * f542 * g521
    d5433 = temp * f543 * g533

    return dict(
        d2201=d2201,
        d2211=d2211,
        d3210=d3210,
        d3222=d3222,
        d4410=d4410,
        d4422=d4422,
        d5220=d5220,
        d5232=d5232,
        d5421=d5421,
        d5433=d5433,
        xlamo=math.fmod(mo + nodeo + nodeo - theta - theta, TWOPI),
        xfact=mdot + dmdt + 2.0 * (nodedot + dnodt - RPTIM) - no,
    )


def secular_update(
    terms: DeepSpaceTerms,
    t: float,
    *,
    no: float,
    argpo: float,
    argpdot: float,
    em: float,
    argpm: float,
    inclm: float,
    mm: float,
    nodem: float,
) -> tuple[float, float, float, float, float, float]:
    """Apply lunar-solar secular rates and resonance effects at ``t`` minutes.

    Returns:
        ``(em, argpm, inclm, mm, nodem, nm)`` after the update.
    """
    theta = math.fmod(terms.gsto + t * RPTIM, TWOPI)
    em += terms.dedt * t
    inclm += terms.didt * t
    argpm += terms.domdt * t
    nodem += terms.dnodt * t
    mm += terms.dmdt * t
    nm = no

    if not terms.resonance:
        return em, argpm, inclm, mm, nodem, nm

    # Euler-Maclaurin integration from epoch in fixed 720-minute steps
    atime = 0.0
    xni = no
    xli = terms.xlamo
    delt = STEPP if t > 0.0 else -STEPP
    while True:
        xndt, xldot, xnddt = _resonance_rates(terms, xli, xni, argpo + argpdot * atime)
        if abs(t - atime) < STEPP:
            break
        xli = xli + xldot * delt + xndt * STEP2
        xni = xni + xndt * delt + xnddt * STEP2
        atime = atime + delt

    ft = t - atime
    nm = xni + xndt * ft + xnddt * ft * ft * 0.5
    xl = xli + xldot * ft + xndt * ft * ft * 0.5
    if terms.resonance == 1:
        mm = xl - nodem - argpm + theta
    else:
        mm = xl - 2.0 * nodem + 2.0 * theta
    return em, argpm, inclm, mm, nodem, nm


def _resonance_rates(
    terms: DeepSpaceTerms, xli: float, xni: float, xomi: float
) -> tuple[float, float, float]:
    xldot = xni + terms.xfact
    if terms.resonance == 1:
        xndt = (
            terms.del1 * math.sin(xli - FASX2)
            + terms.del2 * math.sin(2.0 * (xli - FASX4))
            + terms.del3 * math.sin(3.0 * (xli - FASX6))
        )
        xnddt = (
            terms.del1 * math.cos(xli - FASX2)
            + 2.0 * terms.del2 * math.cos(2.0 * (xli - FASX4))
            + 3.0 * terms.del3 * math.cos(3.0 * (xli - FASX6))
        )
        return xndt, xldot, xnddt * xldot

    x2omi = xomi + xomi
    x2li = xli + xli
    xndt = (
        terms.d2201 * math.sin(x2omi + xli - G22)
        + terms.d2211 * math.sin(xli - G22)
        + terms.d3210 * math.sin(xomi + xli - G32)
        + terms.d3222 * math.sin(-xomi + xli - G32)
        + terms.d4410 * math.sin(x2omi + x2li - G44)
        + terms.d4422 * math.sin(x2li - G44)
        + terms.d5220 * math.sin(xomi + xli - G52)
        + terms.d5232 * math.sin(-xomi + xli - G52)
        + terms.d5421 * math.sin(xomi + x2li - G54)
        + terms.d5433 * math.sin(-xomi + x2li - G54)
    )
    xnddt = (
        terms.d2201 * math.cos(x2omi + xli - G22)
        + terms.d2211 * math.cos(xli - G22)
        + terms.d3210 * math.cos(xomi + xli - G32)
        + terms.d3222 * math.cos(-xomi + xli - G32)
        + terms.d5220 * math.cos(xomi + xli - G52)
        + terms.d5232 * math.cos(-xomi + xli - G52)
        + 2.0
        * (
            terms.d4410 * math.cos(x2omi + x2li - G44)
            + terms.d4422 * math.cos(x2li - G44)
            + terms.d5421 * math.cos(xomi + x2li - G54)
            + terms.d5433 * math.cos(-xomi + x2li - G54)
        )
    )
    return xndt, xldot, xnddt * xldot


def periodics(
    terms: DeepSpaceTerms,
    t: float,
    ep: float,
    inclp: float,
    nodep: float,
    argpp: float,
    mp: float,
) -> tuple[float, float, float, float, float]:
    """Apply lunar-solar periodic terms at ``t`` minutes.

    Low inclinations (below 0.2 rad) use the Lyddane modification to avoid
    the singularity in the node.

    Returns:
        ``(ep, inclp, nodep, argpp, mp)`` after the update.
    """
    zm = terms.zmos + ZNS * t
    zf = zm + 2.0 * ZES * math.sin(zm)
    sinzf = math.sin(zf)
    f2 = 0.5 * sinzf * sinzf - 0.25
    f3 = -0.5 * sinzf * math.cos(zf)
    ses = terms.se2 * f2 + terms.se3 * f3
    sis = terms.si2 * f2 + terms.si3 * f3
    sls = terms.sl2 * f2 + terms.sl3 * f3 + terms.sl4 * sinzf
    sghs = terms.sgh2 * f2 + terms.sgh3 * f3 + terms.sgh4 * sinzf
    shs = terms.sh2 * f2 + terms.sh3 * f3

    zm = terms.zmol + ZNL * t
    zf = zm + 2.0 * ZEL * math.sin(zm)
    sinzf = math.sin(zf)
    f2 = 0.5 * sinzf * sinzf - 0.25
    f3 = -0.5 * sinzf * math.cos(zf)
    sel = terms.ee2 * f2 + terms.e3 * f3
    sil = terms.xi2 * f2 + terms.xi3 * f3
    sll = terms.xl2 * f2 + terms.xl3 * f3 + terms.xl4 * sinzf
    sghl = terms.xgh2 * f2 + terms.xgh3 * f3 + terms.xgh4 * sinzf
    shll = terms.xh2 * f2 + terms.xh3 * f3

    pe = ses + sel
    pinc = sis + sil
    pl = sls + sll
    pgh = sghs + sghl
    ph = shs + shll

    inclp = inclp + pinc
    ep = ep + pe
    sinip = math.sin(inclp)
    cosip = math.cos(inclp)

    if inclp >= 0.2:
        ph = ph / sinip
        pgh = pgh - cosip * ph
        argpp = argpp + pgh
        nodep = nodep + ph
        mp = mp + pl
        return ep, inclp, nodep, argpp, mp

    # Lyddane modification
    sinop = math.sin(nodep)
    cosop = math.cos(nodep)
    alfdp = sinip * sinop
    betdp = sinip * cosop
    dalf = ph * cosop + pinc * cosip * sinop
    dbet = -ph * sinop + pinc * cosip * cosop
    alfdp = alfdp + dalf
    betdp = betdp + dbet
    nodep = math.fmod(nodep, TWOPI)
    xls = mp + argpp + cosip * nodep
    dls = pl + pgh - pinc * nodep * sinip
    xls = xls + dls
    xnoh = nodep
    nodep = math.atan2(alfdp, betdp)
    if abs(xnoh - nodep) > math.pi:
        if nodep < xnoh:
            nodep = nodep + TWOPI
        else:
            nodep = nodep - TWOPI
    mp = mp + pl
    argpp = xls - mp - cosip * nodep
    return ep, inclp, nodep, argpp, mp

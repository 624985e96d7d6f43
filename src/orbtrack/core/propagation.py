"""Orbital propagation via SGP4/SDP4.

A pure-Python SGP4 following Vallado et al., "Revisiting Spacetrack Report
#3" (AIAA 2006-6753), with WGS-72 constants from :mod:`sgp4.earth_gravity`.
Each :class:`~orbtrack.core.tle.ElementRecord` is initialised once into an
immutable :class:`Sgp4Model`; :func:`propagate` then evaluates the model at
any time without mutating it.

Failures are reported as :class:`PropagationError` subclasses instead of
numeric error codes so callers can tell bad elements, decayed objects and a
non-converging Kepler solve apart.
"""

from __future__ import annotations

import functools
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable

import numpy as np
from numpy.typing import NDArray
from sgp4.earth_gravity import wgs72

from orbtrack.core import deep_space
from orbtrack.core.deep_space import DeepSpaceTerms
from orbtrack.core.frames import gmst_from_julian
from orbtrack.core.tle import ElementRecord, OrbitRegime
from orbtrack.utils.constants import (
    DEFAULT_KEPLER_MAX_ITERATIONS,
    DEFAULT_KEPLER_TOLERANCE,
    MINUTES_PER_DAY,
)

logger = logging.getLogger(__name__)

TWOPI = 2.0 * math.pi
X2O3 = 2.0 / 3.0
XPDOTP = MINUTES_PER_DAY / TWOPI  # rev/day per rad/min
_TEMP4 = 1.5e-12

# Days since 1949 December 31 00:00 UT are counted from this instant.
_SGP4_EPOCH_ORIGIN = datetime(1949, 12, 31, tzinfo=timezone.utc)
_JD_SGP4_EPOCH_ORIGIN = 2433281.5

GRAVITY = wgs72
VKMPERSEC = GRAVITY.radiusearthkm * GRAVITY.xke / 60.0


class PropagationError(ValueError):
    """Propagation of an element set failed.

    Attributes:
        catalog_id: Catalog number of the failing record.
        minutes_since_epoch: Requested time offset, if known.
    """

    def __init__(
        self, message: str, catalog_id: int, minutes_since_epoch: float | None = None
    ) -> None:
        self.catalog_id = catalog_id
        self.minutes_since_epoch = minutes_since_epoch
        super().__init__(message)


class InvalidElements(PropagationError):
    """Elements do not describe a bound orbit (eccentricity, mean motion, semi-latus rectum)."""


class Decayed(PropagationError):
    """The object is below the Earth's surface or its drag terms are exhausted."""


class NonConvergent(PropagationError):
    """Kepler's equation did not converge within the iteration budget."""


@dataclass
class OrbitState:
    """Position and velocity in the TEME frame.

    Attributes:
        position_km: [x, y, z] position in km.
        velocity_km_s: [vx, vy, vz] velocity in km/s.
        time: UTC time of this state.
        regime: Branch that produced the state.
    """

    position_km: NDArray[np.float64]  # shape (3,)
    velocity_km_s: NDArray[np.float64]  # shape (3,)
    time: datetime
    regime: OrbitRegime = OrbitRegime.NEAR_EARTH

    @property
    def radius_km(self) -> float:
        return float(np.linalg.norm(self.position_km))

    @property
    def speed_km_s(self) -> float:
        return float(np.linalg.norm(self.velocity_km_s))


@dataclass(frozen=True)
class Sgp4Model:
    """Initialised SGP4 coefficients for one element set.

    Angles in radians, mean motion in rad/min, distances in earth radii.
    ``deep_space`` is set only for the deep-space branch.
    """

    catalog_id: int
    epoch: datetime
    bstar: float
    ecco: float
    inclo: float
    nodeo: float
    argpo: float
    mo: float
    no_unkozai: float
    # Secular rates
    mdot: float
    argpdot: float
    nodedot: float
    nodecf: float
    # Drag
    cc1: float
    cc4: float
    cc5: float
    d2: float
    d3: float
    d4: float
    t2cof: float
    t3cof: float
    t4cof: float
    t5cof: float
    omgcof: float
    xmcof: float
    eta: float
    delmo: float
    sinmao: float
    isimp: bool
    # Periodics
    con41: float
    x1mth2: float
    x7thm1: float
    xlcof: float
    aycof: float
    deep_space: DeepSpaceTerms | None = None

    @property
    def regime(self) -> OrbitRegime:
        if self.deep_space is None:
            return OrbitRegime.NEAR_EARTH
        return OrbitRegime.DEEP_SPACE


def _epoch_days(epoch: datetime) -> float:
    return (epoch - _SGP4_EPOCH_ORIGIN) / timedelta(days=1)


def _long_period_coefficients(sinio: float, cosio: float) -> tuple[float, float]:
    j3oj2 = GRAVITY.j3oj2
    if abs(cosio + 1.0) > _TEMP4:
        xlcof = -0.25 * j3oj2 * sinio * (3.0 + 5.0 * cosio) / (1.0 + cosio)
    else:
        xlcof = -0.25 * j3oj2 * sinio * (3.0 + 5.0 * cosio) / _TEMP4
    aycof = -0.5 * j3oj2 * sinio
    return xlcof, aycof


def _check_elements(record: ElementRecord, minutes: float | None = None) -> None:
    if not 0.0 <= record.eccentricity < 1.0:
        raise InvalidElements(
            f"NORAD {record.catalog_id}: eccentricity {record.eccentricity} outside [0, 1)",
            record.catalog_id,
            minutes,
        )
    if record.mean_motion_rev_per_day <= 0.0:
        raise InvalidElements(
            f"NORAD {record.catalog_id}: mean motion {record.mean_motion_rev_per_day} is not positive",
            record.catalog_id,
            minutes,
        )


@functools.lru_cache(maxsize=4096)
def build_model(record: ElementRecord) -> Sgp4Model:
    """Initialise SGP4 for one element set.

    Results are cached per record; records are immutable and hashable.

    Raises:
        InvalidElements: If eccentricity is outside [0, 1) or mean motion
            is not positive.
    """
    _check_elements(record)

    radius = GRAVITY.radiusearthkm
    xke = GRAVITY.xke
    j2 = GRAVITY.j2
    j4 = GRAVITY.j4
    j3oj2 = GRAVITY.j3oj2

    ecco = record.eccentricity
    inclo = math.radians(record.inclination_deg)
    nodeo = math.radians(record.raan_deg)
    argpo = math.radians(record.arg_perigee_deg)
    mo = math.radians(record.mean_anomaly_deg)
    no_kozai = record.mean_motion_rev_per_day / XPDOTP
    bstar = record.bstar

    ss = 78.0 / radius + 1.0
    qzms2t = ((120.0 - 78.0) / radius) ** 4

    # Recover the Brouwer mean motion and semi-major axis
    eccsq = ecco * ecco
    omeosq = 1.0 - eccsq
    rteosq = math.sqrt(omeosq)
    cosio = math.cos(inclo)
    cosio2 = cosio * cosio
    ak = (xke / no_kozai) ** X2O3
    d1 = 0.75 * j2 * (3.0 * cosio2 - 1.0) / (rteosq * omeosq)
    del_ = d1 / (ak * ak)
    adel = ak * (1.0 - del_ * del_ - del_ * (1.0 / 3.0 + 134.0 * del_ * del_ / 81.0))
    del_ = d1 / (adel * adel)
    no_unkozai = no_kozai / (1.0 + del_)

    ao = (xke / no_unkozai) ** X2O3
    sinio = math.sin(inclo)
    po = ao * omeosq
    con42 = 1.0 - 5.0 * cosio2
    con41 = -con42 - cosio2 - cosio2
    posq = po * po
    rp = ao * (1.0 - ecco)

    isimp = rp < 220.0 / radius + 1.0
    sfour = ss
    qzms24 = qzms2t
    perige = (rp - 1.0) * radius
    if perige < 156.0:
        sfour = perige - 78.0
        if perige < 98.0:
            sfour = 20.0
        qzms24 = ((120.0 - sfour) / radius) ** 4
        sfour = sfour / radius + 1.0

    pinvsq = 1.0 / posq
    tsi = 1.0 / (ao - sfour)
    eta = ao * ecco * tsi
    etasq = eta * eta
    eeta = ecco * eta
    psisq = abs(1.0 - etasq)
    coef = qzms24 * tsi**4
    coef1 = coef / psisq**3.5
    cc2 = coef1 * no_unkozai * (
        ao * (1.0 + 1.5 * etasq + eeta * (4.0 + etasq))
        + 0.375 * j2 * tsi / psisq * con41 * (8.0 + 3.0 * etasq * (8.0 + etasq))
    )
    cc1 = bstar * cc2
    cc3 = 0.0
    if ecco > 1.0e-4:
        cc3 = -2.0 * coef * tsi * j3oj2 * no_unkozai * sinio / ecco
    x1mth2 = 1.0 - cosio2
    cc4 = 2.0 * no_unkozai * coef1 * ao * omeosq * (
        eta * (2.0 + 0.5 * etasq)
        + ecco * (0.5 + 2.0 * etasq)
        - j2 * tsi / (ao * psisq) * (
            -3.0 * con41 * (1.0 - 2.0 * eeta + etasq * (1.5 - 0.5 * eeta))
            + 0.75 * x1mth2 * (2.0 * etasq - eeta * (1.0 + etasq)) * math.cos(2.0 * argpo)
        )
    )
    cc5 = 2.0 * coef1 * ao * omeosq * (1.0 + 2.75 * (etasq + eeta) + eeta * etasq)

    cosio4 = cosio2 * cosio2
    temp1 = 1.5 * j2 * pinvsq * no_unkozai
    temp2 = 0.5 * temp1 * j2 * pinvsq
    temp3 = -0.46875 * j4 * pinvsq * pinvsq * no_unkozai
    mdot = (
        no_unkozai
        + 0.5 * temp1 * rteosq * con41
        + 0.0625 * temp2 * rteosq * (13.0 - 78.0 * cosio2 + 137.0 * cosio4)
    )
    argpdot = (
        -0.5 * temp1 * con42
        + 0.0625 * temp2 * (7.0 - 114.0 * cosio2 + 395.0 * cosio4)
        + temp3 * (3.0 - 36.0 * cosio2 + 49.0 * cosio4)
    )
    xhdot1 = -temp1 * cosio
    nodedot = xhdot1 + (
        0.5 * temp2 * (4.0 - 19.0 * cosio2) + 2.0 * temp3 * (3.0 - 7.0 * cosio2)
    ) * cosio
    xpidot = argpdot + nodedot
    omgcof = bstar * cc3 * math.cos(argpo)
    xmcof = 0.0
    if ecco > 1.0e-4:
        xmcof = -X2O3 * coef * bstar / eeta
    nodecf = 3.5 * omeosq * xhdot1 * cc1
    t2cof = 1.5 * cc1
    xlcof, aycof = _long_period_coefficients(sinio, cosio)
    delmo = (1.0 + eta * math.cos(mo)) ** 3
    sinmao = math.sin(mo)
    x7thm1 = 7.0 * cosio2 - 1.0

    terms = None
    if TWOPI / no_unkozai >= 225.0:
        isimp = True
        epoch_days = _epoch_days(record.epoch)
        terms = deep_space.initialise(
            epoch=epoch_days,
            gsto=gmst_from_julian(epoch_days + _JD_SGP4_EPOCH_ORIGIN),
            xke=xke,
            ecco=ecco,
            inclo=inclo,
            nodeo=nodeo,
            argpo=argpo,
            mo=mo,
            no=no_unkozai,
            mdot=mdot,
            nodedot=nodedot,
            xpidot=xpidot,
        )

    d2 = d3 = d4 = t3cof = t4cof = t5cof = 0.0
    if not isimp:
        cc1sq = cc1 * cc1
        d2 = 4.0 * ao * tsi * cc1sq
        temp = d2 * tsi * cc1 / 3.0
        d3 = (17.0 * ao + sfour) * temp
        d4 = 0.5 * temp * ao * tsi * (221.0 * ao + 31.0 * sfour) * cc1
        t3cof = d2 + 2.0 * cc1sq
        t4cof = 0.25 * (3.0 * d3 + cc1 * (12.0 * d2 + 10.0 * cc1sq))
        t5cof = 0.2 * (
            3.0 * d4 + 12.0 * cc1 * d3 + 6.0 * d2 * d2 + 15.0 * cc1sq * (2.0 * d2 + cc1sq)
        )

    logger.debug(
        "Initialised SGP4 for NORAD %d (%s, perigee %.1f km)",
        record.catalog_id,
        "deep-space" if terms else "near-earth",
        perige,
    )

    return Sgp4Model(
        catalog_id=record.catalog_id,
        epoch=record.epoch,
        bstar=bstar,
        ecco=ecco,
        inclo=inclo,
        nodeo=nodeo,
        argpo=argpo,
        mo=mo,
        no_unkozai=no_unkozai,
        mdot=mdot,
        argpdot=argpdot,
        nodedot=nodedot,
        nodecf=nodecf,
        cc1=cc1,
        cc4=cc4,
        cc5=cc5,
        d2=d2,
        d3=d3,
        d4=d4,
        t2cof=t2cof,
        t3cof=t3cof,
        t4cof=t4cof,
        t5cof=t5cof,
        omgcof=omgcof,
        xmcof=xmcof,
        eta=eta,
        delmo=delmo,
        sinmao=sinmao,
        isimp=isimp,
        con41=con41,
        x1mth2=x1mth2,
        x7thm1=x7thm1,
        xlcof=xlcof,
        aycof=aycof,
        deep_space=terms,
    )


def propagate_model(
    model: Sgp4Model,
    tsince: float,
    *,
    kepler_tolerance: float = DEFAULT_KEPLER_TOLERANCE,
    max_kepler_iterations: int = DEFAULT_KEPLER_MAX_ITERATIONS,
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Evaluate an initialised model ``tsince`` minutes from its epoch.

    Returns:
        ``(position_km, velocity_km_s)`` in TEME.

    Raises:
        InvalidElements: Eccentricity leaves its valid range or the
            semi-latus rectum turns negative.
        Decayed: Drag terms are exhausted or the object is below the
            Earth's surface.
        NonConvergent: Kepler's equation did not converge.
    """
    xke = GRAVITY.xke
    j2 = GRAVITY.j2
    j3oj2 = GRAVITY.j3oj2
    sat = model.catalog_id
    t = tsince

    # Secular gravity and atmospheric drag
    xmdf = model.mo + model.mdot * t
    argpdf = model.argpo + model.argpdot * t
    nodedf = model.nodeo + model.nodedot * t
    argpm = argpdf
    mm = xmdf
    t2 = t * t
    nodem = nodedf + model.nodecf * t2
    tempa = 1.0 - model.cc1 * t
    tempe = model.bstar * model.cc4 * t
    templ = model.t2cof * t2

    if not model.isimp:
        delomg = model.omgcof * t
        delm = model.xmcof * ((1.0 + model.eta * math.cos(xmdf)) ** 3 - model.delmo)
        temp = delomg + delm
        mm = xmdf + temp
        argpm = argpdf - temp
        t3 = t2 * t
        t4 = t3 * t
        tempa = tempa - model.d2 * t2 - model.d3 * t3 - model.d4 * t4
        tempe = tempe + model.bstar * model.cc5 * (math.sin(mm) - model.sinmao)
        templ = templ + model.t3cof * t3 + t4 * (model.t4cof + t * model.t5cof)

    nm = model.no_unkozai
    em = model.ecco
    inclm = model.inclo
    terms = model.deep_space
    if terms is not None:
        em, argpm, inclm, mm, nodem, nm = deep_space.secular_update(
            terms,
            t,
            no=model.no_unkozai,
            argpo=model.argpo,
            argpdot=model.argpdot,
            em=em,
            argpm=argpm,
            inclm=inclm,
            mm=mm,
            nodem=nodem,
        )

    if nm <= 0.0:
        raise InvalidElements(f"NORAD {sat}: mean motion {nm:.6g} is not positive", sat, t)
    if tempa <= 0.0:
        raise Decayed(f"NORAD {sat}: drag terms exhausted at {t:.1f} min", sat, t)

    am = (xke / nm) ** X2O3 * tempa * tempa
    nm = xke / am**1.5
    em = em - tempe

    if em >= 1.0 or em < -0.001:
        raise InvalidElements(f"NORAD {sat}: mean eccentricity {em:.6g} out of range", sat, t)
    if em < 1.0e-6:
        em = 1.0e-6
    if am < 1.0 or am * (1.0 - em) < 1.0:
        raise Decayed(
            f"NORAD {sat}: mean perigee below the Earth's surface at {t:.1f} min", sat, t
        )

    mm = mm + model.no_unkozai * templ
    xlm = mm + argpm + nodem
    nodem = math.fmod(nodem, TWOPI)
    argpm = math.fmod(argpm, TWOPI)
    xlm = math.fmod(xlm, TWOPI)
    mm = math.fmod(xlm - argpm - nodem, TWOPI)

    ep = em
    xincp = inclm
    argpp = argpm
    nodep = nodem
    mp = mm
    sinip = math.sin(inclm)
    cosip = math.cos(inclm)
    xlcof = model.xlcof
    aycof = model.aycof
    con41 = model.con41
    x1mth2 = model.x1mth2
    x7thm1 = model.x7thm1

    if terms is not None:
        ep, xincp, nodep, argpp, mp = deep_space.periodics(terms, t, ep, xincp, nodep, argpp, mp)
        if xincp < 0.0:
            xincp = -xincp
            nodep = nodep + math.pi
            argpp = argpp - math.pi
        if ep < 0.0 or ep > 1.0:
            raise InvalidElements(
                f"NORAD {sat}: perturbed eccentricity {ep:.6g} out of range", sat, t
            )
        sinip = math.sin(xincp)
        cosip = math.cos(xincp)
        xlcof, aycof = _long_period_coefficients(sinip, cosip)
        cosisq = cosip * cosip
        con41 = 3.0 * cosisq - 1.0
        x1mth2 = 1.0 - cosisq
        x7thm1 = 7.0 * cosisq - 1.0

    # Long-period periodics
    axnl = ep * math.cos(argpp)
    temp = 1.0 / (am * (1.0 - ep * ep))
    aynl = ep * math.sin(argpp) + temp * aycof
    xl = mp + argpp + nodep + temp * xlcof * axnl

    # Kepler's equation, Newton steps clamped to 0.95 rad
    u = math.fmod(xl - nodep, TWOPI)
    eo1 = u
    sineo1 = coseo1 = 0.0
    converged = False
    for _ in range(max_kepler_iterations):
        sineo1 = math.sin(eo1)
        coseo1 = math.cos(eo1)
        step = (u - aynl * coseo1 + axnl * sineo1 - eo1) / (
            1.0 - coseo1 * axnl - sineo1 * aynl
        )
        if abs(step) >= 0.95:
            step = 0.95 if step > 0.0 else -0.95
        eo1 = eo1 + step
        if abs(step) < kepler_tolerance:
            converged = True
            break
    if not converged:
        logger.debug("Kepler solve for NORAD %d stopped after %d iterations", sat, max_kepler_iterations)
        raise NonConvergent(
            f"NORAD {sat}: Kepler's equation did not converge in {max_kepler_iterations} iterations",
            sat,
            t,
        )

    # Short-period periodics
    ecose = axnl * coseo1 + aynl * sineo1
    esine = axnl * sineo1 - aynl * coseo1
    el2 = axnl * axnl + aynl * aynl
    pl = am * (1.0 - el2)
    if pl < 0.0:
        raise InvalidElements(f"NORAD {sat}: semi-latus rectum {pl:.6g} is negative", sat, t)

    rl = am * (1.0 - ecose)
    rdotl = math.sqrt(am) * esine / rl
    rvdotl = math.sqrt(pl) / rl
    betal = math.sqrt(1.0 - el2)
    temp = esine / (1.0 + betal)
    sinu = am / rl * (sineo1 - aynl - axnl * temp)
    cosu = am / rl * (coseo1 - axnl + aynl * temp)
    su = math.atan2(sinu, cosu)
    sin2u = (cosu + cosu) * sinu
    cos2u = 1.0 - 2.0 * sinu * sinu
    temp = 1.0 / pl
    temp1 = 0.5 * j2 * temp
    temp2 = temp1 * temp

    mrt = rl * (1.0 - 1.5 * temp2 * betal * con41) + 0.5 * temp1 * x1mth2 * cos2u
    su = su - 0.25 * temp2 * x7thm1 * sin2u
    xnode = nodep + 1.5 * temp2 * cosip * sin2u
    xinc = xincp + 1.5 * temp2 * cosip * sinip * cos2u
    mvt = rdotl - nm * temp1 * x1mth2 * sin2u / xke
    rvdot = rvdotl + nm * temp1 * (x1mth2 * cos2u + 1.5 * con41) / xke

    if mrt < 1.0:
        raise Decayed(f"NORAD {sat}: radius below the Earth's surface at {t:.1f} min", sat, t)

    sinsu = math.sin(su)
    cossu = math.cos(su)
    snod = math.sin(xnode)
    cnod = math.cos(xnode)
    sini = math.sin(xinc)
    cosi = math.cos(xinc)
    xmx = -snod * cosi
    xmy = cnod * cosi
    ux = xmx * sinsu + cnod * cossu
    uy = xmy * sinsu + snod * cossu
    uz = sini * sinsu
    vx = xmx * cossu - cnod * sinsu
    vy = xmy * cossu - snod * sinsu
    vz = sini * cossu

    radius = GRAVITY.radiusearthkm
    position = np.array([mrt * ux, mrt * uy, mrt * uz], dtype=np.float64) * radius
    velocity = np.array(
        [mvt * ux + rvdot * vx, mvt * uy + rvdot * vy, mvt * uz + rvdot * vz],
        dtype=np.float64,
    ) * VKMPERSEC
    return position, velocity


def minutes_since_epoch(record: ElementRecord, when: datetime) -> float:
    """Minutes between the record's epoch and ``when`` (negative before epoch)."""
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return (when - record.epoch) / timedelta(minutes=1)


def propagate(
    record: ElementRecord,
    when: datetime,
    *,
    kepler_tolerance: float = DEFAULT_KEPLER_TOLERANCE,
    max_kepler_iterations: int = DEFAULT_KEPLER_MAX_ITERATIONS,
) -> OrbitState:
    """Propagate an element set to an absolute UTC time.

    Args:
        record: A parsed element set.
        when: Target time; naive datetimes are taken as UTC. May precede
            the epoch.
        kepler_tolerance: Residual (rad) at which the Kepler solve stops.
        max_kepler_iterations: Iteration budget for the Kepler solve.

    Returns:
        The TEME state at ``when``.

    Raises:
        InvalidElements: If the elements are not a valid bound orbit.
        Decayed: If the object has re-entered at ``when``.
        NonConvergent: If the Kepler solve exhausts its budget.
        ValueError: If ``max_kepler_iterations`` is less than 1.
    """
    if max_kepler_iterations < 1:
        raise ValueError("max_kepler_iterations must be at least 1")
    tsince = minutes_since_epoch(record, when)
    _check_elements(record, tsince)
    model = build_model(record)
    position, velocity = propagate_model(
        model,
        tsince,
        kepler_tolerance=kepler_tolerance,
        max_kepler_iterations=max_kepler_iterations,
    )
    return OrbitState(
        position_km=position,
        velocity_km_s=velocity,
        time=when if when.tzinfo else when.replace(tzinfo=timezone.utc),
        regime=model.regime,
    )


def propagate_many(
    record: ElementRecord, times: Iterable[datetime], **kwargs
) -> list[OrbitState]:
    """Propagate one element set to several times.

    Raises:
        PropagationError: On the first failing time.
    """
    states = [propagate(record, t, **kwargs) for t in times]
    logger.debug("Propagated NORAD %d to %d times", record.catalog_id, len(states))
    return states


def orbital_period(record: ElementRecord) -> timedelta:
    """Orbital period from the Kozai mean motion."""
    return record.orbital_period

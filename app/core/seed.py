"""
Startup seed data: permissions, built-in roles, ASQA standards and the
bootstrap administrator. Safe to run on every start.
"""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.password import generate_temp_password
from app.core import config
from app.models.policy import Standard
from app.models.user import (
    DEFAULT_ROLE_PERMISSIONS,
    PERMISSION_CATALOGUE,
    ROLE_DESCRIPTIONS,
    Department,
    Permission,
    Role,
    RoleName,
    User,
    UserStatus,
)

logger = logging.getLogger(__name__)

# (code, title, category) from the Standards for RTOs 2015
ASQA_STANDARDS = [
    ("1", "Training, assessment and support services meet the needs of learners and industry", "Training and Assessment"),
    ("1.1", "Training and assessment strategies and practices are responsive to industry and learner needs", "Training and Assessment"),
    ("1.2", "Amount of training is determined for each learner", "Training and Assessment"),
    ("1.3", "Sufficient trainers, assessors, facilities and resources", "Training and Assessment"),
    ("1.4", "Training and assessment strategies meet training package requirements", "Training and Assessment"),
    ("1.5", "Industry engagement informs training and assessment", "Training and Assessment"),
    ("1.7", "Learners receive support services", "Learner Support"),
    ("1.8", "Assessment complies with the principles of assessment and rules of evidence", "Assessment"),
    ("1.9", "Validation plan for assessment practices", "Assessment"),
    ("1.10", "Validation of each training product at least once every five years", "Assessment"),
    ("1.12", "Recognition of prior learning is offered", "Assessment"),
    ("1.13", "Trainers and assessors hold the required competencies", "Trainer Competency"),
    ("1.14", "Trainers hold the training and assessment credential", "Trainer Competency"),
    ("1.16", "Trainers undertake professional development", "Trainer Competency"),
    ("2", "Operations are quality assured", "Governance"),
    ("2.1", "Compliance with the Standards at all times", "Governance"),
    ("2.2", "Systematic monitoring and evaluation of operations", "Governance"),
    ("2.3", "Third party arrangements are monitored", "Governance"),
    ("3", "AQF certification documentation is issued", "Certification"),
    ("3.1", "AQF certification is issued within 30 days", "Certification"),
    ("3.6", "Records of certification are retained", "Certification"),
    ("4", "Accurate and accessible information about the RTO", "Marketing"),
    ("4.1", "Information and marketing is accurate and factual", "Marketing"),
    ("5", "Learners are informed and protected", "Learner Support"),
    ("5.1", "Learners are informed before enrolment", "Learner Support"),
    ("5.2", "Learners are advised of their rights and obligations", "Learner Support"),
    ("5.3", "Fees and refunds are disclosed", "Learner Support"),
    ("6", "Complaints and appeals are recorded and handled fairly", "Complaints and Appeals"),
    ("6.1", "Complaints policy is in place", "Complaints and Appeals"),
    ("6.2", "Complaints and appeals are handled in a timely manner", "Complaints and Appeals"),
    ("6.5", "Causes of complaints are identified and corrective action taken", "Complaints and Appeals"),
    ("7", "Effective governance and administration", "Governance"),
    ("7.3", "Secure learner records are kept", "Governance"),
    ("7.5", "Accurate data is provided to the regulator", "Governance"),
    ("8", "Cooperation with the regulator and legislative compliance", "Governance"),
    ("8.5", "Compliance with Commonwealth, state and territory legislation", "Governance"),
]


async def seed_permissions_and_roles(db: AsyncSession) -> dict[str, Role]:
    result = await db.execute(select(Permission))
    permissions = {p.name: p for p in result.scalars().all()}

    for resource, actions in PERMISSION_CATALOGUE.items():
        for action in actions:
            name = f"{resource}.{action}"
            if name not in permissions:
                permission = Permission(
                    resource=resource,
                    action=action,
                    name=name,
                    description=f"{action.title()} {resource.replace('_', ' ')}",
                )
                db.add(permission)
                permissions[name] = permission

    result = await db.execute(select(Role))
    roles = {r.name: r for r in result.scalars().all()}

    for role_name, granted in DEFAULT_ROLE_PERMISSIONS.items():
        role = roles.get(role_name.value)
        if role is None:
            role = Role(name=role_name.value, description=ROLE_DESCRIPTIONS[role_name], permissions=[])
            db.add(role)
            roles[role_name.value] = role
        held = {p.name for p in role.permissions}
        for name in sorted(granted - held):
            role.permissions.append(permissions[name])

    await db.flush()
    return roles


async def seed_standards(db: AsyncSession) -> int:
    result = await db.execute(select(Standard.code))
    existing = set(result.scalars().all())

    added = 0
    for clause, title, category in ASQA_STANDARDS:
        code = f"Clause {clause}" if "." in clause else f"Standard {clause}"
        if code in existing:
            continue
        db.add(Standard(
            code=code,
            title=title,
            clause=clause,
            category=category,
        ))
        added += 1
    return added


async def seed_admin(db: AsyncSession, roles: dict[str, Role]) -> None:
    result = await db.execute(select(User).where(User.email == config.ADMIN_EMAIL.lower()))
    if result.scalar_one_or_none() is not None:
        return

    password = config.ADMIN_PASSWORD
    if not password:
        password = generate_temp_password()
        logger.warning(
            "Created administrator %s with generated password %s. Change it after first login.",
            config.ADMIN_EMAIL, password,
        )

    admin = User(
        email=config.ADMIN_EMAIL.lower(),
        full_name="System Administrator",
        department=Department.ADMIN,
        status=UserStatus.ACTIVE,
        roles=[roles[RoleName.SYSTEM_ADMIN.value]],
    )
    admin.set_password(password)
    db.add(admin)
    logger.info("Created bootstrap administrator %s", admin.email)


async def seed_database(db: AsyncSession) -> None:
    roles = await seed_permissions_and_roles(db)
    added = await seed_standards(db)
    await seed_admin(db, roles)
    await db.commit()
    if added:
        logger.info("Seeded %d ASQA standards", added)

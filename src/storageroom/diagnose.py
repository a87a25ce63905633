"""Rule-based diagnosis of failed CDK and AWS CLI runs.

Rules are evaluated in order and the first match wins; an unmatched error
gets a generic diagnosis. This is a heuristic helper: it never raises and
never blocks the error path that called it.
"""

import logging
import re
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

ACCOUNT_PATTERNS = [
    re.compile(r"account\s+(\d{12})", re.IGNORECASE),
    re.compile(r"aws://(\d{12})"),
]
REGION_PATTERN = re.compile(r"\b(?:eu|us|ap|sa|ca|me|af|il|mx)-[a-z]+-\d+\b")

MAX_TIPS = 3


@dataclass(frozen=True)
class FixCommand:
    command: str
    description: str


@dataclass(frozen=True)
class Rule:
    """A pattern and the advice attached to it."""

    name: str
    pattern: re.Pattern
    title: str
    diagnosis: str
    fix: FixCommand | None = None
    tips: tuple[str, ...] = ()

    def matches(self, text: str) -> bool:
        return bool(self.pattern.search(text))


@dataclass(frozen=True)
class Diagnosis:
    title: str
    diagnosis: str
    fix_commands: list[FixCommand] = field(default_factory=list)
    tips: list[str] = field(default_factory=list)
    rule: str | None = None

    @property
    def suggestion(self) -> str:
        return self.diagnosis

    @property
    def command(self) -> str | None:
        return self.fix_commands[0].command if self.fix_commands else None


RULES: list[Rule] = [
    Rule(
        name="bootstrap-required",
        pattern=re.compile(
            r"Is account \d+ bootstrapped|Has the environment been bootstrapped"
            r"|No bucket named 'cdk-hnb659fds-assets",
            re.IGNORECASE,
        ),
        title="CDK Bootstrap Required",
        diagnosis=(
            "The AWS account/region has not been bootstrapped for CDK. CDK needs the "
            "bootstrap stack to store deployment assets."
        ),
        fix=FixCommand("npx cdk bootstrap aws://ACCOUNT_ID/REGION", "Bootstrap the environment"),
        tips=("Bootstrap every account/region pair once before the first deploy.",),
    ),
    Rule(
        name="bootstrap-outdated",
        pattern=re.compile(
            r"Bootstrap stack.*outdated|requires a newer version of the bootstrap", re.IGNORECASE
        ),
        title="Bootstrap Stack Outdated",
        diagnosis="The CDK bootstrap stack is older than this CDK version requires.",
        fix=FixCommand("npx cdk bootstrap aws://ACCOUNT_ID/REGION", "Upgrade the bootstrap stack"),
        tips=("Re-run bootstrap after upgrading the CDK CLI.",),
    ),
    Rule(
        name="credentials-missing",
        pattern=re.compile(
            r"Unable to resolve AWS account|Unable to locate credentials", re.IGNORECASE
        ),
        title="AWS Credentials Missing",
        diagnosis="No valid AWS credentials were found for the provisioning tool.",
        fix=FixCommand("aws configure", "Configure AWS CLI credentials"),
        tips=("Check AWS_PROFILE and AWS_REGION in the shell running the deploy.",),
    ),
    Rule(
        name="expired-token",
        pattern=re.compile(r"ExpiredToken", re.IGNORECASE),
        title="Expired AWS Token",
        diagnosis="The AWS session token has expired.",
        fix=FixCommand("aws sts get-caller-identity", "Verify credentials after refreshing them"),
        tips=("Refresh SSO or assumed-role sessions before long deployments.",),
    ),
    Rule(
        name="permission-denied",
        pattern=re.compile(r"AccessDenied|is not authorized|UnauthorizedOperation", re.IGNORECASE),
        title="Permission Denied",
        diagnosis="The IAM identity does not have permission for this operation.",
        fix=FixCommand("aws sts get-caller-identity", "Show which identity is being used"),
        tips=(
            "Compare the failing action with the IAM policies attached to the identity.",
            "CDK deploys assume the bootstrap roles; check their trust policy.",
        ),
    ),
    Rule(
        name="bucket-name-conflict",
        pattern=re.compile(r"BucketAlreadyExists|BucketAlreadyOwnedByYou", re.IGNORECASE),
        title="S3 Bucket Name Conflict",
        diagnosis="This bucket name is already taken. S3 bucket names are global.",
        tips=("Choose a different bucket name, or import the existing bucket into the stack.",),
    ),
    Rule(
        name="already-exists",
        pattern=re.compile(r"already exists", re.IGNORECASE),
        title="Resource Already Exists",
        diagnosis="A resource with the same name already exists outside this stack.",
        fix=FixCommand("npx cdk import", "Import the existing resource into the stack"),
        tips=("Rename the resource in the stack if the existing one should be kept separate.",),
    ),
    Rule(
        name="stack-failure",
        pattern=re.compile(r"CREATE_FAILED|UPDATE_FAILED|ROLLBACK", re.IGNORECASE),
        title="CloudFormation Stack Failure",
        diagnosis="The stack deployment failed and CloudFormation rolled it back.",
        fix=FixCommand(
            "npx cdk deploy --verbose --require-approval never",
            "Redeploy with verbose output",
        ),
        tips=("The first *_FAILED event in the stack history usually names the root cause.",),
    ),
    Rule(
        name="missing-dependencies",
        pattern=re.compile(r"ENOENT|Cannot find module|Module not found", re.IGNORECASE),
        title="Missing Dependencies",
        diagnosis="CDK dependencies are missing from the infrastructure directory.",
        fix=FixCommand("cd infrastructure/cdk; npm install", "Install CDK dependencies"),
    ),
    Rule(
        name="code-error",
        pattern=re.compile(r"SyntaxError|TypeError|ReferenceError"),
        title="Code Error in CDK Stack",
        diagnosis="The CDK app failed to evaluate because of a code error.",
        fix=FixCommand("npx cdk synth", "Synthesize to surface the error"),
    ),
    Rule(
        name="throttled",
        pattern=re.compile(r"rate exceeded|Throttling", re.IGNORECASE),
        title="AWS Rate Limit",
        diagnosis="An AWS API rate limit was hit.",
        tips=("Wait a moment and try again.",),
    ),
]

FALLBACK_TITLE = "Unrecognized Error"
FALLBACK_DIAGNOSIS = "The failure did not match any known pattern. Review the full output above."
FALLBACK_TIPS = (
    "Re-run the command with --verbose for more detail.",
    "Check the CloudFormation console events for the stack.",
)


def _substitute(command: str, text: str) -> str:
    for pattern in ACCOUNT_PATTERNS:
        match = pattern.search(text)
        if match:
            command = command.replace("ACCOUNT_ID", match.group(1))
            break
    region = REGION_PATTERN.search(text)
    if region:
        command = command.replace("REGION", region.group(0))
    return command


def analyze(
    error_output: str,
    command: str | None = None,
    rules: list[Rule] | None = None,
) -> Diagnosis:
    """Diagnose ``error_output`` (and the failing ``command``, if known)."""
    text = "\n".join(str(part) for part in (command, error_output) if part)

    for rule in RULES if rules is None else rules:
        try:
            matched = rule.matches(text)
        except Exception:
            logger.exception("Diagnosis rule %s failed", rule.name)
            continue
        if not matched:
            continue

        fixes = []
        if rule.fix is not None:
            fixes.append(FixCommand(_substitute(rule.fix.command, text), rule.fix.description))
        return Diagnosis(
            title=rule.title,
            diagnosis=rule.diagnosis,
            fix_commands=fixes,
            tips=list(rule.tips[:MAX_TIPS]),
            rule=rule.name,
        )

    return Diagnosis(title=FALLBACK_TITLE, diagnosis=FALLBACK_DIAGNOSIS, tips=list(FALLBACK_TIPS))

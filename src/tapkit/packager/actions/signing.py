"""Signs files marked with <Sign Certificate="..."/> using the RSA key the attribute names."""

from pathlib import Path

from cryptography.hazmat.primitives.asymmetric import rsa
from pyvider.telemetry import logger

from ..crypto import load_private_key, sign_bytes
from ..exceptions import SigningError
from ..models import PackageModel, SignDirective
from ..tools import copy_module_info, unique_path
from .base import ActionArgs, PackageAction, register_action


@register_action
class SignAction(PackageAction):
    order = 1000

    def execute(self, package: PackageModel, args: ActionArgs) -> bool:
        keys: dict[Path, rsa.RSAPrivateKey] = {}
        signed_dir = args.temp_dir / "Signed"
        changed = False

        for file in package.files:
            directive = file.get_directive(SignDirective)
            if directive is None:
                continue
            if not directive.certificate:
                raise SigningError(
                    f"File '{file.relative_destination_path}' has a 'Sign' element "
                    "without a 'Certificate' attribute."
                )

            key_path = Path(directive.certificate)
            if not key_path.is_absolute():
                key_path = args.context.project_dir / key_path
            if key_path not in keys:
                keys[key_path] = load_private_key(key_path)

            target = unique_path(signed_dir, file.source_path.name)
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(sign_bytes(file.source_path.read_bytes(), keys[key_path]))
            copy_module_info(file.source_path, target)
            logger.debug(f"Signed '{file.file_name}'", key=str(key_path))

            file.source_path = target
            file.remove_directive(SignDirective)
            changed = True
        return changed

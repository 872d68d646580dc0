"""
Unit tests for the module package layout
Each module exposes one create_* entry point and the stack program wires them together
"""

import unittest
import sys
import os
import inspect

# Add project root to path so we can import modules
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

ENTRY_POINTS = {
    'vpc': 'create_vpc_resources',
    'iam': 'create_iam_resources',
    'eks': 'create_eks_resources',
    'addons': 'create_addons_resources',
    'secrets': 'create_secrets_resources',
    'observability': 'create_observability_resources',
    'workload': 'create_workload_resources',
    'gitops': 'create_gitops_resources',
    'state_storage': 'create_state_storage_resources',
}


class TestModuleStructure(unittest.TestCase):
    """Test that modules follow the function-based pattern"""

    def test_modules_export_entry_points(self):
        """Each module package re-exports its create_* function"""
        for module_name, function_name in ENTRY_POINTS.items():
            with self.subTest(module=module_name):
                module = __import__(f'modules.{module_name}', fromlist=[''])
                self.assertIn(function_name, module.__all__)
                function = getattr(module, function_name)
                self.assertTrue(inspect.isfunction(function))
                self.assertEqual(function.__module__, f'modules.{module_name}.functions')

    def test_module_packages_declare_no_resources(self):
        """Importing a module package must not create resources or read stack config"""
        for module_name in ENTRY_POINTS:
            with self.subTest(module=module_name):
                module = __import__(f'modules.{module_name}', fromlist=[''])
                self.assertFalse(hasattr(module, 'config'))
                classes = [name for name, cls in inspect.getmembers(module, inspect.isclass)
                           if cls.__module__.startswith(f'modules.{module_name}')]
                self.assertEqual(classes, [])

    def test_top_level_package_exports(self):
        import modules

        for function_name in ENTRY_POINTS.values():
            with self.subTest(function=function_name):
                self.assertIn(function_name, modules.__all__)
        self.assertIn('create_namespace', modules.__all__)

    def test_entry_points_return_dicts(self):
        """Entry points are annotated to return a dict of outputs"""
        for module_name, function_name in ENTRY_POINTS.items():
            with self.subTest(module=module_name):
                module = __import__(f'modules.{module_name}', fromlist=[''])
                signature = inspect.signature(getattr(module, function_name))
                self.assertIn('Dict', str(signature.return_annotation))


class TestStackProgram(unittest.TestCase):
    """Test the Pulumi program wiring without executing it"""

    def setUp(self):
        with open(os.path.join(PROJECT_ROOT, '__main__.py'), 'r') as f:
            self.main_content = f.read()

    def test_main_imports_module_functions(self):
        for module_name, function_name in ENTRY_POINTS.items():
            with self.subTest(module=module_name):
                self.assertIn(f'from modules.{module_name} import', self.main_content)
                self.assertIn(function_name, self.main_content)

    def test_main_exports(self):
        for export in ('cluster_name', 'cluster_endpoint', 'vpc_id', 'public_subnet_ids',
                       'private_subnet_ids', 'kubeconfig_command', 'app_image',
                       'app_namespace', 'addons_installed'):
            with self.subTest(export=export):
                self.assertIn(f'pulumi.export("{export}"', self.main_content)

    def test_delivery_modes_are_exclusive(self):
        """Argo CD and the workload module never both own the application"""
        delivery = self.main_content.split('# 7. Delivery')[1]
        argocd_branch, _, pulumi_branch = delivery.partition('\nelse:\n')
        self.assertIn('config.delivery_mode == "argocd"', argocd_branch)
        self.assertIn('create_gitops_resources(', argocd_branch)
        self.assertNotIn('create_workload_resources(', argocd_branch)
        self.assertIn('create_workload_resources(', pulumi_branch)
        self.assertNotIn('create_gitops_resources(', pulumi_branch)


class TestPackaging(unittest.TestCase):
    """The image build context holds only pyproject.toml and visit_logger/"""

    def _read(self, *path):
        with open(os.path.join(PROJECT_ROOT, *path), 'r') as f:
            return f.read()

    def test_wheel_contains_only_the_service(self):
        pyproject = self._read('pyproject.toml')
        dockerignore = self._read('.dockerignore').split()

        self.assertIn('packages = ["visit_logger"]', pyproject)
        self.assertNotIn('py-modules', pyproject)
        self.assertIn('modules', dockerignore)
        self.assertIn('config.py', dockerignore)

    def test_image_installs_declared_dependencies(self):
        dockerfile = self._read('Dockerfile')

        self.assertIn('RUN pip install .\n', dockerfile)
        self.assertNotIn('--no-deps', dockerfile)
        self.assertNotIn('pip install fastapi', dockerfile)

    def test_ci_lints_before_testing(self):
        workflow = self._read('.github', 'workflows', 'ci.yml')
        test_job = workflow.split('\n  test:\n')[1].split('\n  build:\n')[0]

        self.assertIn('run: ruff check .', workflow)
        self.assertIn('needs: lint', test_job)
        self.assertIn('needs: [lint, test, build, scan]', workflow)

    def test_scanned_image_ref_is_lowercase(self):
        workflow = self._read('.github', 'workflows', 'ci.yml')

        self.assertIn('${GITHUB_REPOSITORY,,}:sha-${GITHUB_SHA::7}', workflow)
        self.assertNotIn('${{ env.IMAGE_NAME }}:sha-', workflow)


if __name__ == "__main__":
    unittest.main(verbosity=2)

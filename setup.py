# type: ignore
from setuptools import find_packages, setup, Command

# Get VERSION constant from gatekeeper.version - we can't simply import that module because
# gatekeeper/__init__.py imports modules that require dependencies we may not have loaded yet.
version_module_globals = {}
with open('./gatekeeper/version.py') as f:
    exec(f.read(), version_module_globals)
gatekeeper_version = version_module_globals['VERSION']


def parse_requirements(filename):
    """ load requirements from a pip requirements file """
    lineiter = (line.strip() for line in open(filename))
    return [line for line in lineiter if line and not line.startswith("#")]


reqs = parse_requirements('requirements.txt')
testreqs = parse_requirements('test-requirements.txt')


class PyTest(Command):
    user_options = []

    def initialize_options(self):
        pass

    def finalize_options(self):
        pass

    def run(self):
        import sys
        import subprocess
        errno = subprocess.call([sys.executable, '-m', 'pytest', 'gatekeeper/testing'])
        raise SystemExit(errno)


setup(
    name='gatekeeper-server',
    version=gatekeeper_version,
    packages=find_packages(),
    description='Server-side feature gate, dynamic config and experiment evaluation for Python',
    long_description='Server-side feature gate, dynamic config and experiment evaluation for Python',
    install_requires=reqs,
    python_requires='>=3.8',
    classifiers=[
        'Intended Audience :: Developers',
        'Operating System :: OS Independent',
        'Programming Language :: Python :: 3',
        'Topic :: Software Development',
        'Topic :: Software Development :: Libraries',
    ],
    extras_require={
        "test": testreqs,
    },
    cmdclass={'test': PyTest},
)

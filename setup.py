from setuptools import setup
README = open('README.md', 'r').read()

setup(
      name='stunclient',
      version='0.2.0',
      packages=['stunclient', 'stunclient.stun'],
      provides=['stunclient'],
      install_requires=['Twisted'],
      extras_require={'test': ['pytest']},
      python_requires='>=3.7',
      entry_points={
          'console_scripts': ['stunclient = stunclient.stun.client:main'],
          },

      license='MIT',

      description="STUN client library",
      classifiers=[
                   'Programming Language :: Python :: 3',
                   'Framework :: Twisted',
                   'Intended Audience :: Developers',
                   'Intended Audience :: Information Technology',
                   'Intended Audience :: System Administrators',
                   'License :: OSI Approved :: MIT License',
                   'Operating System :: OS Independent',
                   'Topic :: Internet',
                   'Topic :: System :: Networking',
                   'Topic :: Software Development :: Libraries :: Python Modules',
                   ],
      long_description=README,
      long_description_content_type='text/markdown',
      )
